import csv
import os
import random
from datetime import timedelta
from decimal import Decimal
from typing import List, Tuple

from dispatch.engine import DeliveryEngine
from dispatch.models import AssignmentStatus
from orders.gateway import InMemoryOrderBook
from orders.models import Order, OrderStatus
from riders.identity import RiderIdentity
from riders.models import utcnow

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# A few Lagos stores the orders are sold from
STORES = [
    (6.5165, 3.3853),  # Yaba
    (6.4541, 3.3947),  # Lagos Island
    (6.6018, 3.3515),  # Ikeja
    (6.4698, 3.5852),  # Lekki
]


def load_riders(filepath="mock_riders_40.csv") -> List[Tuple[str, str, str, float, float, bool]]:
    """
    Reads the CSV written by generate_mock_riders.py. Falls back to random riders
    around Yaba when the file has not been generated.
    """
    absolute_path = os.path.join(BASE_DIR, filepath)
    if not os.path.exists(absolute_path):
        print(f"'{filepath}' not found, generating riders in memory instead.")
        return [
            (f"SIM-{i}", f"Rider {i}", f"+234803{1000000 + i}",
             6.515 + (random.random() - 0.5) * 0.15, 3.378 + (random.random() - 0.5) * 0.15, True)
            for i in range(20)
        ]

    riders = []
    with open(absolute_path, 'r') as file:
        reader = csv.DictReader(file)
        for row in reader:
            riders.append((
                row['device'],
                row['name'],
                row['phone'],
                float(row['lat']),
                float(row['lon']),
                row['available'] == "true",
            ))
    return riders


def make_orders(count=30) -> List[Order]:
    orders = []
    for i in range(count):
        pickup = random.choice(STORES)
        dropoff = (pickup[0] + (random.random() - 0.5) * 0.08, pickup[1] + (random.random() - 0.5) * 0.08)
        orders.append(Order(
            id=f"ORD-{str(i+1).zfill(4)}",
            pickup=pickup,
            dropoff=dropoff,
            total=Decimal(random.randint(3000, 25000)),
            status=OrderStatus.PAID,
            delivery_fee=Decimal(random.choice([800, 1200, 1500])),
        ))
    return orders


def run_simulation():
    print("=== STARTING END-TO-END DISPATCH SIMULATION ===")

    # 1. Load Data
    order_book = InMemoryOrderBook()
    orders = [order_book.add(order) for order in make_orders(30)]
    engine = DeliveryEngine.in_memory(orders=order_book)
    start = utcnow()

    riders = {}
    for device, name, phone, lat, lon, available in load_riders():
        rider = engine.register_rider(RiderIdentity.from_signals(user_agent=device), name, phone, lat, lon, now=start)
        if not available:
            rider = engine.heartbeat(rider.id, lat, lon, available=False, now=start)
        riders[rider.id] = rider
    print(f"Loaded {len(orders)} Orders and {len(riders)} Riders.\n")

    # 2. Orders get paid, dispatcher offers each to the nearest free rider
    print("Dispatching paid orders...")
    assignments = [engine.order_paid(order.id, now=start) for order in orders]
    offered = [a for a in assignments if a.status == AssignmentStatus.OFFERED]
    print(f"Offered {len(offered)} / {len(assignments)}, {len(assignments) - len(offered)} queued.\n")

    # 3. Riders respond. Some never answer and will be swept.
    silent = 0
    for assignment in offered:
        if random.random() < 0.2:
            silent += 1
            continue
        holder = assignment.rider_session_id
        for step, minutes in [("accept", 1), ("picked_up", 10), ("en_route", 12)]:
            engine.courier_action(assignment.id, step, rider_session_id=holder, now=start + timedelta(minutes=minutes))
        if random.random() < 0.9:
            engine.courier_action(
                assignment.id, "delivered",
                proof_url=f"https://pod.example.com/{assignment.order_id}.jpg",
                rating=random.randint(3, 5),
                rider_session_id=holder,
                now=start + timedelta(minutes=25),
            )
        else:
            engine.courier_action(assignment.id, "cancel", rider_session_id=holder, now=start + timedelta(minutes=20))

    # 4. Riders who finished report in again, then the sweeper runs
    sweep_at = start + timedelta(minutes=3)
    for rider_id, rider in riders.items():
        if engine.assignments.active_for_rider(rider_id) is None and rider.position is not None:
            engine.heartbeat(rider_id, rider.position[0], rider.position[1], now=sweep_at)
    summary = engine.sweep(now=sweep_at)
    print(f"Sweep: {silent} silent riders, reassigned={summary.reassigned} requeued={summary.requeued}\n")

    # 5. Report
    output_path = os.path.join(BASE_DIR, "dispatch_results.csv")
    with open(output_path, "w", newline='') as file:
        writer = csv.writer(file)
        writer.writerow(["order_id", "assignment_id", "status", "rider_session_id", "distance_km", "eta_minutes", "order_status"])

        for order in orders:
            assignment = engine.assignment_for_order(order.id)
            writer.writerow([
                order.id,
                assignment.id,
                assignment.status.value,
                assignment.rider_session_id or "",
                round(assignment.distance_km, 2) if assignment.distance_km is not None else "N/A",
                assignment.estimated_duration_minutes,
                order_book.get_order(order.id).status.value,
            ])

    counts = {}
    for order in orders:
        status = engine.assignment_for_order(order.id).status.value
        counts[status] = counts.get(status, 0) + 1

    print("=== SIMULATION COMPLETE ===")
    for status, count in sorted(counts.items()):
        print(f"{status}: {count}")
    print("Results written to 'dispatch_results.csv'.")


if __name__ == "__main__":
    run_simulation()
