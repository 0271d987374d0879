# scripts/simulate_vehicles.py

import asyncio
import json
import os
import random
from datetime import datetime, timezone

from asyncio_mqtt import Client

BROKER_HOST = os.getenv("FLEET_MQTT_HOST", "localhost")
BROKER_PORT = int(os.getenv("FLEET_MQTT_PORT", "1883"))

# same base as the backend subscription: fleet/vehicles/# -> fleet/vehicles
BASE_TOPIC = os.getenv("FLEET_MQTT_TOPIC", "fleet/vehicles/#")
if BASE_TOPIC.endswith("/#"):
    BASE_TOPIC = BASE_TOPIC[:-2]

# --------------------------------------------------------------------
# Vehicles, screens and ads
# --------------------------------------------------------------------

VEHICLES = [
    {"id": "VH-001", "slots": [1, 2], "lat": 14.5995, "lng": 120.9842},
    {"id": "VH-002", "slots": [1], "lat": 14.6760, "lng": 121.0437},
    {"id": "VH-003", "slots": [1, 2, 3], "lat": 14.5547, "lng": 121.0244},
]

ADS = [
    {"ad_id": "AD-100", "ad_title": "Coffee Promo", "duration": 30},
    {"ad_id": "AD-200", "ad_title": "Telco Plan", "duration": 15},
    {"ad_id": "AD-300", "ad_title": "Mall Sale", "duration": 20},
]


async def publish_heartbeats(client: Client) -> None:
    """
    fleet/vehicles/<vehicle>/<slot>/heartbeat every 20s
    """
    while True:
        for vehicle in VEHICLES:
            for slot in vehicle["slots"]:
                topic = f"{BASE_TOPIC}/{vehicle['id']}/{slot}/heartbeat"
                await client.publish(topic, b"")
        await asyncio.sleep(20)


async def publish_locations(client: Client) -> None:
    """
    fleet/vehicles/<vehicle>/1/location every 15s, drifting a little each time
    """
    while True:
        now = datetime.now(timezone.utc).isoformat()
        for vehicle in VEHICLES:
            vehicle["lat"] += random.uniform(-0.002, 0.002)
            vehicle["lng"] += random.uniform(-0.002, 0.002)
            topic = f"{BASE_TOPIC}/{vehicle['id']}/1/location"
            payload = {
                "lat": vehicle["lat"],
                "lng": vehicle["lng"],
                "speed": round(random.uniform(0, 60), 1),
                "heading": round(random.uniform(0, 359), 1),
                "accuracy": 5.0,
                "timestamp": now,
            }
            print("PUB LOCATION:", topic, payload)
            await client.publish(topic, json.dumps(payload))
        await asyncio.sleep(15)


async def publish_playbacks(client: Client) -> None:
    """
    fleet/vehicles/<vehicle>/<slot>/playback, one ad per screen every 30s;
    now and then a QR scan on the ad that just played
    """
    while True:
        now = datetime.now(timezone.utc).isoformat()
        for vehicle in VEHICLES:
            for slot in vehicle["slots"]:
                ad = random.choice(ADS)
                topic = f"{BASE_TOPIC}/{vehicle['id']}/{slot}/playback"
                payload = {
                    "ad_id": ad["ad_id"],
                    "ad_title": ad["ad_title"],
                    "ad_duration": ad["duration"],
                    "view_time": round(random.uniform(0.5, 1.0) * ad["duration"], 1),
                    "start_time": now,
                }
                print("PUB PLAYBACK:", topic, payload)
                await client.publish(topic, json.dumps(payload))

                if random.random() < 0.1:
                    scan_topic = f"{BASE_TOPIC}/{vehicle['id']}/{slot}/qr"
                    scan = {
                        "ad_id": ad["ad_id"],
                        "ad_title": ad["ad_title"],
                        "payload": {"scan_timestamp": now, "country": "PH"},
                    }
                    print("PUB QR:", scan_topic, scan)
                    await client.publish(scan_topic, json.dumps(scan))
        await asyncio.sleep(30)


async def main() -> None:
    async with Client(BROKER_HOST, BROKER_PORT) as client:
        await asyncio.gather(
            publish_heartbeats(client),
            publish_locations(client),
            publish_playbacks(client),
        )


if __name__ == "__main__":
    asyncio.run(main())
