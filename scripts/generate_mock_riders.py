import csv
import random


def generate_mock_riders(filename="mock_riders_40.csv", count=40):
    # Base coordinate roughly at Yaba, Lagos, where the sample stores cluster
    base_lat = 6.515
    base_lon = 3.378

    with open(filename, mode='w', newline='') as file:
        writer = csv.writer(file)
        writer.writerow(["device", "name", "phone", "lat", "lon", "available"])

        for i in range(count):
            device = f"RIDER-DEVICE-{str(i+1).zfill(3)}"

            # Scatter riders around the city (roughly +/- 8km)
            lat = base_lat + (random.random() - 0.5) * 0.15
            lon = base_lon + (random.random() - 0.5) * 0.15

            # 85% chance of being on shift
            available = "true" if random.random() < 0.85 else "false"

            # 0803xxxxxxx, a valid MTN Nigeria prefix
            phone = f"+234803{random.randint(1000000, 9999999)}"

            writer.writerow([device, f"Rider {i+1}", phone, round(lat, 6), round(lon, 6), available])

    print(f"Successfully generated {count} mock riders into '{filename}'.")


if __name__ == "__main__":
    generate_mock_riders()
