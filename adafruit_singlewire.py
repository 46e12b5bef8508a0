# SPDX-FileCopyrightText: Copyright (c) 2024 Liz Clark for Adafruit Industries
#
# SPDX-License-Identifier: MIT
"""
`adafruit_singlewire`
================================================================================

CircuitPython driver for single-wire pulse-width sensors (DHT style protocol)

The host pulls the shared data line LOW for a start window, releases it, waits
for the two response pulses from the sensor and then times 40 bit-cells. Each
bit-cell is a LOW pulse followed by a HIGH pulse whose width encodes the bit.
The five received bytes are checked with a modulo-256 additive checksum.

The driver is written as a synchronous state machine advanced one clock edge
at a time by :meth:`SingleWireSensor.tick`. All timing thresholds are counted
in ticks of that clock.

* Author(s): Liz Clark

Implementation Notes
--------------------

**Hardware:**

* Any single-wire humidity/temperature sensor using the DHT11/DHT22/AM230x
  signalling, connected to a digital pin with a pull-up resistor

**Software and Dependencies:**

* Adafruit CircuitPython firmware for the supported boards:
  https://circuitpython.org/downloads

* Adafruit Blinka (for ``micropython`` and ``digitalio`` on CPython):
  https://github.com/adafruit/Adafruit_Blinka
"""

import time
from collections import namedtuple

from micropython import const

try:
    from typing import Optional
except ImportError:
    pass

__version__ = "0.0.0+auto.0"
__repo__ = "https://github.com/adafruit/Adafruit_CircuitPython_SingleWire.git"

# Reference clock and thresholds, in cycles of a 50 MHz clock
_REFERENCE_CLOCK_HZ = const(50_000_000)
_START_LOW_CYCLES = const(900_000)  # 18 ms
_START_HIGH_CYCLES = const(2_000)  # 40 us
_BIT_LOW_MIN_CYCLES = const(2_000)  # 40 us
_BIT_ONE_THRESHOLD_CYCLES = const(2_400)  # 48 us

_MIN_COUNTER_BITS = const(20)
_PAYLOAD_BITS = const(40)
_PAYLOAD_MASK = const(0xFF_FFFF_FFFF)
_BIT_INDEX_MASK = const(0x3F)
_LAST_BIT_INDEX = const(39)


class ProtocolState:
    """Protocol phases of the single-wire state machine."""

    IDLE = const(0)
    START_LOW = const(1)
    START_HIGH = const(2)
    WAIT_RESP_LOW = const(3)
    WAIT_RESP_HIGH = const(4)
    BIT_LOW = const(5)
    BIT_HIGH = const(6)
    WAIT_LATCH = const(7)
    LATCH = const(8)
    WAIT_NEXT = const(9)

    _NAMES = (
        "IDLE",
        "START_LOW",
        "START_HIGH",
        "WAIT_RESP_LOW",
        "WAIT_RESP_HIGH",
        "BIT_LOW",
        "BIT_HIGH",
        "WAIT_LATCH",
        "LATCH",
        "WAIT_NEXT",
    )

    @classmethod
    def is_valid(cls, state: int) -> bool:
        """Return True if ``state`` is one of the protocol phases."""
        return 0 <= state < len(cls._NAMES)

    @classmethod
    def name(cls, state: int) -> str:
        """
        Readable name of a protocol phase.

        :param state: One of the ``ProtocolState`` constants
        :return: The constant's name
        :raises ValueError: If ``state`` is not a protocol phase
        """
        if not cls.is_valid(state):
            raise ValueError(f"Unknown protocol state {state}")
        return cls._NAMES[state]


class LineMode:
    """Who owns the data line."""

    RELEASED = const(0)
    DRIVEN = const(1)


# Protocol thresholds, in clock cycles
Timing = namedtuple("Timing", ("start_low", "start_high", "bit_low_min", "bit_one_threshold"))

# The four data bytes and the checksum byte of one sensor frame
Reading = namedtuple(
    "Reading",
    ("first_integral", "first_fractional", "second_integral", "second_fractional", "checksum"),
)

_EMPTY_READING = Reading(0, 0, 0, 0, 0)


def timing_for_clock(clock_hz: int) -> Timing:
    """
    Scale the protocol thresholds to a clock rate.

    The reference values are defined at 50 MHz and scaled proportionally.

    :param clock_hz: Frequency of the clock driving :meth:`SingleWireSensor.tick`
    :return: The thresholds in cycles of that clock
    :raises ValueError: If the clock is not positive or too slow to time the protocol
    """
    if clock_hz <= 0:
        raise ValueError("clock_hz must be positive")
    timing = Timing(
        *(
            cycles * clock_hz // _REFERENCE_CLOCK_HZ
            for cycles in (
                _START_LOW_CYCLES,
                _START_HIGH_CYCLES,
                _BIT_LOW_MIN_CYCLES,
                _BIT_ONE_THRESHOLD_CYCLES,
            )
        )
    )
    if min(timing) < 1:
        raise ValueError(f"clock_hz {clock_hz} is too slow to time the protocol")
    return timing


def split_payload(buffer: int) -> Reading:
    """
    Split a 40-bit payload into its fields, most significant byte first.

    :param buffer: The received bits, first bit in bit 39
    :return: The decoded fields
    """
    buffer &= _PAYLOAD_MASK
    return Reading(
        (buffer >> 32) & 0xFF,
        (buffer >> 24) & 0xFF,
        (buffer >> 16) & 0xFF,
        (buffer >> 8) & 0xFF,
        buffer & 0xFF,
    )


def checksum_ok(reading: Reading) -> bool:
    """
    Check the additive checksum of a frame.

    :param reading: The decoded frame
    :return: True if the low 8 bits of the sum of the data bytes equal the checksum byte
    """
    total = (
        reading.first_integral
        + reading.first_fractional
        + reading.second_integral
        + reading.second_fractional
    )
    return (total & 0xFF) == reading.checksum


class LineDriver:
    """
    Owns the shared data line.

    When driven the pin is an output at the chosen level, when released it is an
    input and the sensor (or the pull-up) sets the level.
    """

    def __init__(self, pin) -> None:
        """
        :param pin: A ``digitalio.DigitalInOut`` compatible pin
        """
        self._pin = pin
        self._mode = None
        self._level = None

    @property
    def mode(self) -> Optional[int]:
        """The current :class:`LineMode`, None until the first :meth:`apply`."""
        return self._mode

    @property
    def level(self) -> Optional[bool]:
        """The output level while driven."""
        return self._level

    @property
    def observed(self) -> bool:
        """Level currently present on the wire."""
        return bool(self._pin.value)

    def apply(self, mode: int, level: bool) -> None:
        """
        Drive or release the line. The pin is only touched on a change.

        :param mode: :attr:`LineMode.DRIVEN` or :attr:`LineMode.RELEASED`
        :param level: Output level, ignored when released
        """
        if mode == LineMode.DRIVEN:
            if self._mode != LineMode.DRIVEN:
                self._pin.switch_to_output(value=level)
            elif self._level != level:
                self._pin.value = level
            self._level = level
        elif self._mode != LineMode.RELEASED:
            self._pin.switch_to_input()
        self._mode = mode


class SingleWireSensor:
    """
    Driver for a single-wire pulse-width sensor.
    """

    def __init__(self, pin, *, clock_hz: int = _REFERENCE_CLOCK_HZ, debug: bool = False):
        """
        Initialize the driver and drive the data line LOW.

        :param pin: The ``digitalio.DigitalInOut`` connected to the sensor data line
        :param clock_hz: Rate at which :meth:`tick` is called. Every threshold is counted
            in ticks, so the caller must tick at this rate
        :param debug: Print state transitions and latched frames
        """
        self._clock_hz = clock_hz
        self._timing = timing_for_clock(clock_hz)
        self._counter_mask = (1 << max(_MIN_COUNTER_BITS, max(self._timing).bit_length() + 1)) - 1
        self._line = LineDriver(pin)
        self.debug = debug
        self.reset()

    def reset(self) -> None:
        """
        Return every register to its initial value and drive the line LOW.
        """
        self._state = ProtocolState.IDLE
        self._counter = 0
        self._bit_index = 0
        self._buffer = 0
        self._reading = _EMPTY_READING
        self._valid = False
        self._line_mode = LineMode.DRIVEN
        self._line_level = False
        self._line.apply(self._line_mode, self._line_level)

    def tick(self, reset_n: bool = True) -> None:
        """
        Advance the state machine by one clock edge.

        The line is sampled once. Every register's next value is computed from
        the current values and all of them are committed together, so nothing
        written during a tick is visible until the next one.

        :param reset_n: Active-low reset. While False every register holds its initial value
        """
        if not reset_n:
            self.reset()
            return

        level = self._line.observed
        timing = self._timing
        state = self._state
        counter = self._counter
        bit_index = self._bit_index
        buffer = self._buffer
        reading = self._reading
        line_mode = self._line_mode
        line_level = self._line_level
        valid = False

        if state == ProtocolState.IDLE:
            line_mode = LineMode.DRIVEN
            line_level = False
            counter = 1
            state = ProtocolState.START_LOW
        elif state == ProtocolState.START_LOW:
            if counter < timing.start_low:
                counter = self._count(counter)
            else:
                line_level = True
                counter = 0
                state = ProtocolState.START_HIGH
        elif state == ProtocolState.START_HIGH:
            if counter < timing.start_high:
                counter = self._count(counter)
            else:
                line_mode = LineMode.RELEASED
                counter = 0
                state = ProtocolState.WAIT_RESP_LOW
        elif state == ProtocolState.WAIT_RESP_LOW:
            # No timeout: waits for the sensor for as long as it takes
            if not level:
                counter = self._count(counter)
            elif counter > 0:
                counter = 1
                state = ProtocolState.WAIT_RESP_HIGH
        elif state == ProtocolState.WAIT_RESP_HIGH:
            if level:
                counter = self._count(counter)
            else:
                counter = 0
                bit_index = 0
                buffer = 0
                state = ProtocolState.BIT_LOW
        elif state == ProtocolState.BIT_LOW:
            if not level:
                counter = self._count(counter)
            elif counter >= timing.bit_low_min:
                counter = 1
                state = ProtocolState.BIT_HIGH
            else:
                # too short to start a bit-cell
                counter = 0
        elif state == ProtocolState.BIT_HIGH:
            if level:
                counter = self._count(counter)
            else:
                bit = 1 if counter > timing.bit_one_threshold else 0
                buffer = ((buffer << 1) | bit) & _PAYLOAD_MASK
                counter = 0
                if bit_index == _LAST_BIT_INDEX:
                    state = ProtocolState.WAIT_LATCH
                else:
                    state = ProtocolState.BIT_LOW
                bit_index = (bit_index + 1) & _BIT_INDEX_MASK
        elif state == ProtocolState.WAIT_LATCH:
            state = ProtocolState.LATCH
        elif state == ProtocolState.LATCH:
            frame = split_payload(buffer)
            if checksum_ok(frame):
                reading = frame
                valid = True
            if self.debug:
                print(f"Frame {bytes(frame).hex()} checksum {'OK' if valid else 'mismatch'}")
            counter = 0
            bit_index = 0
            buffer = 0
            state = ProtocolState.WAIT_NEXT
        elif state == ProtocolState.WAIT_NEXT:
            if not level:
                state = ProtocolState.IDLE

        if self.debug and state != self._state:
            print(f"{ProtocolState.name(self._state)} -> {ProtocolState.name(state)}")

        self._state = state
        self._counter = counter
        self._bit_index = bit_index
        self._buffer = buffer
        self._reading = reading
        self._valid = valid
        self._line_mode = line_mode
        self._line_level = line_level
        self._line.apply(line_mode, line_level)

    def measure(self, max_cycles: Optional[int] = None) -> Reading:
        """
        Tick until a frame passes its checksum.

        :param max_cycles: Give up after this many ticks. Defaults to four start windows
        :return: The latched frame
        :raises RuntimeError: If no valid frame arrived in time
        :raises ValueError: If ``max_cycles`` is not positive
        """
        if max_cycles is None:
            max_cycles = 4 * self._timing.start_low
        if max_cycles <= 0:
            raise ValueError("max_cycles must be positive")
        for _ in range(max_cycles):
            self.tick()
            if self._valid:
                return self._reading
        raise RuntimeError(
            f"No valid frame after {max_cycles} cycles, stuck in {self.state_name}"
        )

    def _count(self, counter: int) -> int:
        return (counter + 1) & self._counter_mask

    @property
    def clock_hz(self) -> int:
        """Rate, in Hz, the thresholds are scaled to."""
        return self._clock_hz

    @property
    def timing(self) -> Timing:
        """Protocol thresholds in clock cycles."""
        return self._timing

    @property
    def state(self) -> int:
        """
        Current protocol phase.

        :return: One of the :class:`ProtocolState` constants
        """
        return self._state

    @property
    def state_name(self) -> str:
        """Name of the current protocol phase."""
        return ProtocolState.name(self._state)

    @property
    def line_mode(self) -> int:
        """:attr:`LineMode.DRIVEN` while the host owns the line."""
        return self._line_mode

    @property
    def line_level(self) -> bool:
        """Output level while the line is driven."""
        return self._line_level

    @property
    def counter(self) -> int:
        """Elapsed cycles in the current state or since the last edge."""
        return self._counter

    @property
    def bit_index(self) -> int:
        """Number of bits captured in the current frame."""
        return self._bit_index

    @property
    def shift_buffer(self) -> int:
        """Bits captured so far, the most recent in bit 0."""
        return self._buffer

    @property
    def reading(self) -> Reading:
        """
        The last frame that passed its checksum.

        All zero until the first valid frame. Frames with a bad checksum leave it unchanged.
        """
        return self._reading

    @property
    def valid(self) -> bool:
        """True for exactly the one tick on which a frame was latched."""
        return self._valid


def measure_tick_rate(pin, cycles: int = 1000) -> int:
    """
    Time how fast this board can call :meth:`SingleWireSensor.tick` in a loop.

    The result is what to pass as ``clock_hz`` when the loop itself is the clock.
    The measurement drives the data line LOW, like the start of a reading.

    :param pin: The ``digitalio.DigitalInOut`` connected to the sensor data line
    :param cycles: Number of ticks to time
    :return: Ticks per second, at least 1
    :raises ValueError: If ``cycles`` is not positive
    """
    if cycles <= 0:
        raise ValueError("cycles must be positive")
    sensor = SingleWireSensor(pin)
    start = time.monotonic_ns()
    for _ in range(cycles):
        sensor.tick()
    elapsed = max(1, time.monotonic_ns() - start)
    return max(1, cycles * 1_000_000_000 // elapsed)
