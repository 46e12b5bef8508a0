# SPDX-FileCopyrightText: Copyright (c) 2024 Liz Clark for Adafruit Industries
#
# SPDX-License-Identifier: MIT

import pytest

from adafruit_singlewire import SingleWireSensor
from simulation import CLOCK_HZ, SimulatedLine, SimulatedPeripheral


@pytest.fixture
def peripheral():
    return SimulatedPeripheral()


@pytest.fixture
def line(peripheral):
    return SimulatedLine(peripheral)


@pytest.fixture
def sensor(line):
    return SingleWireSensor(line, clock_hz=CLOCK_HZ)
