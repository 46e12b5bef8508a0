# SPDX-FileCopyrightText: Copyright (c) 2024 Liz Clark for Adafruit Industries
#
# SPDX-License-Identifier: MIT

'''Adafruit single-wire sensor example'''

import time
import board
import digitalio
from adafruit_singlewire import SingleWireSensor, measure_tick_rate

# Data line with a pull-up to 3.3V
pin = digitalio.DigitalInOut(board.D4)

# Every threshold is counted in ticks, so tell the driver how fast this loop ticks.
# The protocol needs at least 25 kHz (a 40 us window must span one tick or more).
clock_hz = measure_tick_rate(pin)
print(f"Tick rate: {clock_hz} Hz")
try:
    sensor = SingleWireSensor(pin, clock_hz=clock_hz)
except ValueError as exception:
    print(f"This board cannot tick fast enough: {exception}")
    raise

while True:
    try:
        reading = sensor.measure()
    except RuntimeError as exception:
        print(exception)
        sensor.reset()
        time.sleep(2)
        continue
    print("Fields: ", end="")
    for field in reading:
        print(f"{field:02X} ", end="")
    print()
    time.sleep(2)
