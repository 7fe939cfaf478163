"""
Database initialization and seeding script.

Run with: python -m dispatch.db_init
"""
import asyncio
from dispatch.models import database
from dispatch.models.employee import AgentAvailability
from dispatch.models.ticket import TicketPriority
from dispatch.services.desk import ServiceDesk


async def seed_database():
    """Seed database with sample agents and a morning's worth of tickets."""
    print("Creating database tables...")
    await database.init_db()
    desk = ServiceDesk(database.async_session_maker)

    print("Seeding sample data...")
    employees = []
    for name, position, availability in [
        ("Ana Torres", "Box 1", AgentAvailability.ACTIVE),
        ("Bruno Diaz", "Box 2", AgentAvailability.ACTIVE),
        ("Carla Sosa", "Box 3", AgentAvailability.PAUSED),
        ("Diego Ruiz", "Box 4", AgentAvailability.INACTIVE),
    ]:
        employees.append(await desk.employees.create_employee(name, position, availability))

    tickets = []
    for service_type, subtype, priority in [
        ("payments", None, TicketPriority.NORMAL),
        ("claims", "billing", TicketPriority.HIGH),
        ("payments", None, TicketPriority.NORMAL),
        ("new accounts", None, TicketPriority.URGENT),
        ("claims", "service outage", TicketPriority.NORMAL),
        ("payments", None, TicketPriority.NORMAL),
    ]:
        # Printed through the lifecycle so free agents pick tickets up like at the counter
        tickets.append(await desk.lifecycle.create_ticket(service_type, subtype, priority))

    print(f"✓ Created {len(employees)} employees")
    print(f"✓ Created {len(tickets)} tickets")
    waiting = (await desk.index.refresh()).general_queue()
    print(f"✓ {len(waiting)} tickets waiting in the general queue")
    print("Database seeding complete!")

    await database.dispose_engine()


if __name__ == "__main__":
    asyncio.run(seed_database())
