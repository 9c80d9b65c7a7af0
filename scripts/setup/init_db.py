# scripts/setup/init_db.py
"""
Initialize database — creates all tables.
Run once before first launch, or after adding new models.
Usage: python scripts/setup/init_db.py
       python scripts/setup/init_db.py --seed     # add a demo station, gates, operators and prices
"""

import sys
import os
import argparse
from datetime import date
from decimal import Decimal
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from tollplaza.database import SessionLocal, create_tables, engine
from tollplaza.config import settings
from tollplaza.models.operator import Operator, ROLE_ADMIN, ROLE_OPERATOR
from tollplaza.models.pricing import BodyTypePrice, VehicleBodyType
from tollplaza.models.station import Gate, Station
from tollplaza.services.gate_allocator import assign_operator_to_station
from sqlalchemy import inspect, text


def seed():
    db = SessionLocal()
    try:
        if db.query(Station).first():
            print("ℹ️  Reference data already present, skipping seed")
            return
        station = Station(name="Main Plaza", code="MAIN")
        db.add(station)
        db.flush()
        db.add_all([
            Gate(station_id=station.id, name="Lane 1 In", gate_type="entry"),
            Gate(station_id=station.id, name="Lane 2 Out", gate_type="exit"),
            Gate(station_id=station.id, name="Lane 3", gate_type="both"),
        ])
        for name, price in [("Car", "5.00"), ("Van", "8.00"), ("Truck", "15.00")]:
            body_type = VehicleBodyType(name=name)
            db.add(body_type)
            db.flush()
            db.add(BodyTypePrice(body_type_id=body_type.id, station_id=station.id,
                                 base_price=Decimal(price), effective_from=date(2000, 1, 1)))
        db.add_all([
            Operator(username="system", role=ROLE_ADMIN),
            Operator(username="operator1", role=ROLE_OPERATOR),
        ])
        db.commit()
        for operator in db.query(Operator).all():
            assign_operator_to_station(db, operator.id, station.id)
        print("✅ Demo station MAIN seeded (3 gates, 3 body types, 2 operators)")
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--seed", action="store_true", help="Insert demo reference data")
    args = parser.parse_args()

    print("🗄️  Toll Plaza DB Initialization")
    print("=" * 40)
    print(f"📡 Database: {settings.DATABASE_URL}")

    # Test connection
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")
    except Exception as e:
        print(f"❌ Cannot connect to database: {e}")
        print("\nMake sure PostgreSQL is running:")
        print("  docker-compose up -d db")
        print("  # or: sudo systemctl start postgresql")
        sys.exit(1)

    print("\n📋 Creating tables...")
    create_tables()
    print("✅ All tables created")

    tables = sorted(inspect(engine).get_table_names())
    print(f"\n📊 Tables in database ({len(tables)} total):")
    for t in tables:
        print(f"   ✓ {t}")

    if args.seed:
        seed()

    print("\n🎉 Database ready! You can now start the backend:")
    print("   uvicorn tollplaza.main:app --host 0.0.0.0 --port 8080 --reload")


if __name__ == "__main__":
    main()
