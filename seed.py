"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 sample riders
  - 10 sample drivers (spread around Bengaluru MG Road, mixed vehicle types)
  - 6 sample requests (open market, one targeted, one accepted, one completed)
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from marketplace.config import settings
from marketplace.domain.clock import utcnow
from marketplace.domain.entities import Coordinate, DriverSnapshot, RideRequest
from marketplace.domain.enums import RequestStatus, VehicleType
from marketplace.infrastructure.database import async_session_factory, engine
from marketplace.infrastructure.models import DriverModel, RiderModel
from marketplace.infrastructure.repositories import RequestRepository

# MG Road, Bengaluru (approx)
CENTER_LAT, CENTER_LNG = 12.9756, 77.6050


RIDERS = [
    {"name": "Aarav Sharma", "email": "aarav@example.com", "rating": 4.8},
    {"name": "Priya Patel", "email": "priya@example.com", "rating": 4.9},
    {"name": "Rohan Mehta", "email": "rohan@example.com", "rating": 4.5},
    {"name": "Sneha Gupta", "email": "sneha@example.com", "rating": 4.7},
    {"name": "Vikram Singh", "email": "vikram@example.com", "rating": 4.6},
    {"name": "Ananya Reddy", "email": "ananya@example.com", "rating": 4.9},
]

DRIVERS = [
    {"name": "Ravi", "vehicle_type": VehicleType.MINI, "model": "Swift", "number": "KA01AB1234", "lat": 12.9760, "lng": 77.6055},
    {"name": "Suresh", "vehicle_type": VehicleType.MINI, "model": "Wagon R", "number": "KA01CD5678", "lat": 12.9716, "lng": 77.5946},
    {"name": "Imran", "vehicle_type": VehicleType.PRIME, "model": "Dzire", "number": "KA02EF9012", "lat": 12.9784, "lng": 77.6408},
    {"name": "Manoj", "vehicle_type": VehicleType.PRIME, "model": "Ciaz", "number": "KA03GH3456", "lat": 12.9352, "lng": 77.6245},
    {"name": "Lakshmi", "vehicle_type": VehicleType.PINK, "model": "i20", "number": "KA04IJ7890", "lat": 12.9698, "lng": 77.6003},
    {"name": "Kiran", "vehicle_type": VehicleType.AUTO, "model": "Bajaj RE", "number": "KA05KL2345", "lat": 12.9740, "lng": 77.6090},
    {"name": "Mahesh", "vehicle_type": VehicleType.AUTO, "model": "TVS King", "number": "KA05MN6789", "lat": 12.9900, "lng": 77.5700},
    {"name": "Arjun", "vehicle_type": VehicleType.BIKE, "model": "Activa", "number": "KA51OP1122", "lat": 12.9770, "lng": 77.6020},
    {"name": "Deepak", "vehicle_type": VehicleType.BIKE, "model": "Splendor", "number": "KA51QR3344", "lat": 13.0350, "lng": 77.5970},
    # Not yet approved: never sees requests
    {"name": "Naveen", "vehicle_type": VehicleType.MINI, "model": "Alto", "number": "KA01ST5566", "lat": 12.9750, "lng": 77.6040, "approved": False},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM riders"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        now = utcnow()

        # ── Riders ────────────────────────────────────────────────────
        riders = []
        for r in RIDERS:
            m = RiderModel(name=r["name"], email=r["email"], rating=r["rating"])
            session.add(m)
            riders.append(m)
        await session.flush()
        print(f"  Created {len(riders)} riders")

        # ── Drivers ───────────────────────────────────────────────────
        drivers = []
        for d in DRIVERS:
            m = DriverModel(
                name=d["name"],
                phone="+9180000000%02d" % len(drivers),
                vehicle_type=d["vehicle_type"],
                vehicle_model=d["model"],
                vehicle_number=d["number"],
                is_online=True,
                is_approved=d.get("approved", True),
                current_lat=d["lat"],
                current_lng=d["lng"],
                last_location_at=now,
            )
            session.add(m)
            drivers.append(m)
        await session.flush()
        print(f"  Created {len(drivers)} drivers")

        # ── Requests ──────────────────────────────────────────────────
        repo = RequestRepository(session, settings.h3_resolution)
        ttl = timedelta(seconds=settings.targeted_offer_ttl_seconds)
        requests = [
            RideRequest(
                rider_id=riders[0].id,
                pickup=Coordinate(12.9758, 77.6045),
                dropoff=Coordinate(12.9352, 77.6245),  # Koramangala
                pickup_address="MG Road Metro",
                dropoff_address="Koramangala 5th Block",
                vehicle_type=VehicleType.MINI,
                fare=210.0,
            ),
            RideRequest(
                rider_id=riders[1].id,
                pickup=Coordinate(12.9719, 77.6412),  # Indiranagar
                dropoff=Coordinate(13.1986, 77.7066),  # Airport
                pickup_address="100 Feet Road, Indiranagar",
                dropoff_address="Kempegowda International Airport",
                vehicle_type=VehicleType.PRIME,
                fare=950.0,
                payment_method="UPI",
            ),
            RideRequest(
                rider_id=riders[2].id,
                pickup=Coordinate(12.9745, 77.6085),
                dropoff=Coordinate(12.9591, 77.6974),  # Marathahalli
                pickup_address="Brigade Road",
                dropoff_address="Marathahalli Bridge",
                vehicle_type=VehicleType.AUTO,
                fare=260.0,
                target_driver_id=drivers[5].id,
                target_expires_at=now + ttl if ttl else None,
            ),
            RideRequest(
                rider_id=riders[3].id,
                pickup=Coordinate(12.9700, 77.6000),
                dropoff=Coordinate(12.9279, 77.6271),
                pickup_address="Richmond Circle",
                dropoff_address="Forum Mall",
                vehicle_type=VehicleType.PINK,
                fare=230.0,
            ),
            RideRequest(
                rider_id=riders[4].id,
                pickup=Coordinate(12.9765, 77.6030),
                dropoff=Coordinate(12.9166, 77.6101),  # BTM
                pickup_address="Trinity Circle",
                dropoff_address="BTM Layout",
                vehicle_type=VehicleType.MINI,
                fare=240.0,
                status=RequestStatus.ACCEPTED,
                driver_id=drivers[0].id,
                driver=DriverSnapshot(
                    name=drivers[0].name,
                    phone=drivers[0].phone,
                    vehicle_model=drivers[0].vehicle_model,
                    vehicle_number=drivers[0].vehicle_number,
                    rating=5.0,
                ),
                accepted_at=now,
            ),
            RideRequest(
                rider_id=riders[5].id,
                pickup=Coordinate(12.9771, 77.6025),
                dropoff=Coordinate(13.0358, 77.5970),  # Hebbal
                pickup_address="Cubbon Park",
                dropoff_address="Hebbal Flyover",
                vehicle_type=VehicleType.BIKE,
                fare=120.0,
                status=RequestStatus.COMPLETED,
                driver_id=drivers[7].id,
                driver=DriverSnapshot(name=drivers[7].name, rating=5.0),
                created_at=now - timedelta(hours=1),
                accepted_at=now - timedelta(minutes=58),
                arrived_at=now - timedelta(minutes=52),
                started_at=now - timedelta(minutes=50),
                completed_at=now - timedelta(minutes=20),
            ),
        ]
        for r in requests:
            await repo.create(r)
        drivers[7].wallet_balance = 120.0
        drivers[7].completed_trips = 1
        print(f"  Created {len(requests)} requests")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
