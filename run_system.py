#!/usr/bin/env python3
import os
import socket
import subprocess
import sys
import time
from pathlib import Path
from urllib.parse import urlparse

BASE_DIR = Path(__file__).resolve().parent


def is_port_open(host: str, port: int) -> bool:
    try:
        with socket.create_connection((host, port), timeout=1):
            return True
    except OSError:
        return False


# === MQTT ===
def ensure_mqtt(url: str) -> None:
    """Проверяет локальный брокер MQTT и запускает mosquitto при необходимости."""
    parsed = urlparse(url)
    host, port = parsed.hostname or "127.0.0.1", parsed.port or 1883

    if is_port_open(host, port):
        print(f"MQTT брокер уже запущен на {host}:{port}")
        return

    print("MQTT брокер не найден, пробуем запустить локально...")
    try:
        subprocess.Popen(["mosquitto"], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        time.sleep(1)
        if not is_port_open(host, port):
            print("Не удалось запустить mosquitto, проверь установку")
    except FileNotFoundError:
        print("mosquitto не найден в системе")


def main() -> int:
    env = dict(os.environ)
    env.setdefault("SEED_FILE", str(BASE_DIR / "src/fleet_web/seed.yaml"))

    if env.get("BUS_IMPL", "rooms").lower() == "mqtt":
        ensure_mqtt(env.get("MQTT_URL", "mqtt://127.0.0.1:1883"))

    port = env.get("PORT", "8000")
    cmd = ["uvicorn", "fleet_web.main:app", "--port", port, "--log-level", "info"]
    print(f"Web API: {' '.join(cmd)}")
    proc = subprocess.Popen(cmd, cwd=BASE_DIR / "src", env=env)
    try:
        return proc.wait()
    except KeyboardInterrupt:
        print("\nЗавершаем...")
        proc.terminate()
        try:
            return proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
            return 1


if __name__ == "__main__":
    sys.exit(main())
