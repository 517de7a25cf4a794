"""Processor (Datapath + ControlUnit) and CLI wrapper.

Datapath holds the machine state: 4K of memory with the font table at 0x000,
sixteen 8-bit V registers (VF doubles as the flag register), the index
register, the call stack, delay/sound timers, the 64x32 monochrome screen and
the 16-key keypad. ControlUnit runs the FETCH-DECODE-EXEC cycle over it and
ticks the timers; `run` is a headless frame loop used by the CLI and tests.
"""

from __future__ import annotations

import logging
import random
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Union

from bcd import double_dabble
from config import ConfigError, load_config
from faults import DecodeFault, LoadSizeFault, MachineFault, MemoryFault, StackFault
from isa import INSTR_SIZE, Instruction, OpCode, UnknownOpcodeError, decode_instr, mnemonic

LOGFILE = "processor.log"

MEM_SIZE = 4096
FONT_START = 0x000
PROGRAM_START = 0x200
NUM_REGS = 16
FLAG_REG = 0xF
STACK_SIZE = 16
NUM_KEYS = 16
SCREEN_WIDTH = 64
SCREEN_HEIGHT = 32
GLYPH_SIZE = 5

FONTSET = bytes(
    [
        0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
        0x20, 0x60, 0x20, 0x20, 0x70,  # 1
        0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
        0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
        0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
        0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
        0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
        0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
        0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
        0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
        0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
        0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
        0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
        0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
        0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
        0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
    ]
)

# Keyboard            Keypad
#   1 2 3 4            1 2 3 C
#   Q W E R     =>     4 5 6 D
#   A S D F            7 8 9 E
#   Z X C V            A 0 B F
KEY_MAP: dict[str, int] = {
    "1": 0x1, "2": 0x2, "3": 0x3, "4": 0xC,
    "q": 0x4, "w": 0x5, "e": 0x6, "r": 0xD,
    "a": 0x7, "s": 0x8, "d": 0x9, "f": 0xE,
    "z": 0xA, "x": 0x0, "c": 0xB, "v": 0xF,
}  # fmt: skip

KeySpec = Union[int, str]


class CycleState(Enum):
    """Outcome of one cycle; STALLED means FX0A is still waiting for a key."""

    RUNNING = "running"
    STALLED = "stalled"


def init_logging(logfile: str = LOGFILE, debug: bool = False, console: bool = False) -> None:
    """Configure root logger to write to `logfile`.

    If debug=True set DEBUG level. If console=True also echo logs to stdout.

    In debug mode a compact format without timestamp is used, e.g.:
        DEBUG root:processor.py:212 Datapath: loaded 132 bytes at 0x200
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    lvl = logging.DEBUG if debug else logging.CRITICAL
    root.setLevel(lvl)

    if debug:
        file_fmt = "%(levelname)s %(name)s:%(filename)s:%(lineno)d %(message)s"
    else:
        file_fmt = "%(levelname)-5s %(message)s"

    # always create a FileHandler even when not debug to allow easier inspection if asked
    fh = logging.FileHandler(logfile, mode="w", encoding="utf-8")
    fh.setLevel(lvl)
    fh.setFormatter(logging.Formatter(file_fmt))
    root.addHandler(fh)

    if debug and console:
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(lvl)
        ch.setFormatter(logging.Formatter("%(levelname)5s %(message)s"))
        root.addHandler(ch)


def resolve_key(key: KeySpec) -> int:
    """Map a key spec to a keypad id 0..15.

    Ints are keypad ids. Strings are either "0x"-prefixed keypad ids or a
    single keyboard character from KEY_MAP.
    """
    if isinstance(key, bool):
        msg = f"Bad key: {key!r}"
        raise ValueError(msg)
    if isinstance(key, int):
        k = key
    else:
        s = str(key).strip().lower()
        if s.startswith("0x"):
            k = int(s, 16)
        elif s in KEY_MAP:
            k = KEY_MAP[s]
        else:
            msg = f"Unknown key: {key!r}"
            raise ValueError(msg)
    if not 0 <= k < NUM_KEYS:
        msg = f"Key {k} out of range (0..{NUM_KEYS - 1})"
        raise ValueError(msg)
    return k


def render_display(frame: tuple[bool, ...] | list[bool]) -> str:
    """Render a row-major 64x32 frame as text: '#' lit, '.' unlit."""
    rows = []
    for y in range(SCREEN_HEIGHT):
        row = frame[y * SCREEN_WIDTH : (y + 1) * SCREEN_WIDTH]
        rows.append("".join("#" if px else "." for px in row))
    return "\n".join(rows)


class Datapath:
    """Datapath (memory + registers + timers + screen + keypad) for the VM."""

    memory: bytearray
    PC: int
    V: list[int]
    I: int  # noqa: E741
    stack: list[int]
    SP: int
    keys: list[bool]
    DT: int
    ST: int
    screen: list[bool]

    # driver-side bookkeeping
    tick: int
    key_schedule: list[tuple[int, int, bool]]

    def __init__(self) -> None:
        """Allocate the machine and bring it to the power-on state."""
        self.reset()

    def reset(self) -> None:
        """Restore every field to its power-on value and re-seed the font table."""
        self.memory = bytearray(MEM_SIZE)
        self.memory[FONT_START : FONT_START + len(FONTSET)] = FONTSET
        self.PC = PROGRAM_START
        self.V = [0] * NUM_REGS
        self.I = 0
        self.stack = [0] * STACK_SIZE
        self.SP = 0
        self.keys = [False] * NUM_KEYS
        self.DT = 0
        self.ST = 0
        self.screen = [False] * (SCREEN_WIDTH * SCREEN_HEIGHT)
        self.tick = 0
        self.key_schedule = []

    def load(self, program: bytes) -> None:
        """Copy a program image into memory at PROGRAM_START.

        Raises LoadSizeFault, before copying anything, if it doesn't fit.
        """
        program = bytes(program)
        capacity = MEM_SIZE - PROGRAM_START
        if len(program) > capacity:
            raise LoadSizeFault(len(program), capacity)
        self.memory[PROGRAM_START : PROGRAM_START + len(program)] = program
        logging.debug("Datapath: loaded %d bytes at 0x%03X", len(program), PROGRAM_START)

    # --- memory helpers ---
    def check_range(self, addr: int, length: int, what: str = "access") -> None:
        """Raise MemoryFault unless [addr, addr + length) lies inside memory."""
        if addr < 0:
            raise MemoryFault(addr, what)
        if addr + length > MEM_SIZE:
            raise MemoryFault(max(addr, MEM_SIZE), what)

    def fetch_word(self) -> int:
        """Read the big-endian instruction word at PC (PC is not moved)."""
        self.check_range(self.PC, INSTR_SIZE, "fetch")
        return (self.memory[self.PC] << 8) | self.memory[self.PC + 1]

    # --- call-stack helpers (return-address stack) ---
    def call_push(self, value: int) -> None:
        """Push a return address. Raises StackFault when the stack is full."""
        if self.SP >= STACK_SIZE:
            msg = f"Call stack overflow (depth {STACK_SIZE}) at PC 0x{self.PC:03X}"
            raise StackFault(msg)
        self.stack[self.SP] = value & 0xFFFF
        self.SP += 1

    def call_pop(self) -> int:
        """Pop a return address. Raises StackFault when the stack is empty."""
        if self.SP == 0:
            msg = f"Call stack underflow at PC 0x{self.PC:03X}"
            raise StackFault(msg)
        self.SP -= 1
        return self.stack[self.SP]

    # --- keypad ---
    def key_down(self, key: int) -> None:
        """Mark keypad key `key` (0..15) pressed."""
        self.keys[resolve_key(key)] = True

    def key_up(self, key: int) -> None:
        """Mark keypad key `key` (0..15) released."""
        self.keys[resolve_key(key)] = False

    def pressed_key(self) -> int | None:
        """Return the lowest pressed key id, or None when nothing is held."""
        for k, down in enumerate(self.keys):
            if down:
                return k
        return None

    def schedule_keys(self, schedule: list[tuple[int, KeySpec, bool]]) -> None:
        """Attach a key timeline: list of (tick, key, pressed)."""
        events = [(int(t), resolve_key(k), bool(p)) for t, k, p in schedule]
        self.key_schedule = sorted(events, key=lambda e: e[0])
        logging.debug("Datapath.schedule_keys called, %d events attached", len(self.key_schedule))

    def apply_key_events(self, tick: int) -> None:
        """Deliver every scheduled key event due at or before `tick`."""
        while self.key_schedule and self.key_schedule[0][0] <= tick:
            _, key, pressed = self.key_schedule.pop(0)
            if pressed:
                self.key_down(key)
            else:
                self.key_up(key)
            logging.debug("[tick %d] key %X %s", tick, key, "down" if pressed else "up")

    # --- screen ---
    def clear_screen(self) -> None:
        self.screen = [False] * (SCREEN_WIDTH * SCREEN_HEIGHT)

    def toggle_pixel(self, x: int, y: int) -> bool:
        """XOR one pixel (coordinates wrap). Return True if it was lit before."""
        idx = (y % SCREEN_HEIGHT) * SCREEN_WIDTH + (x % SCREEN_WIDTH)
        was_lit = self.screen[idx]
        self.screen[idx] = not was_lit
        return was_lit

    def display(self) -> tuple[bool, ...]:
        """Read-only copy of the 64x32 frame, row-major."""
        return tuple(self.screen)


class ControlUnit:
    """Control unit implementing the FETCH-DECODE-EXEC loop for the Datapath."""

    dp: Datapath
    rng: Any
    cycles_per_frame: int
    tick_limit: int
    pause_tick: int | None
    lenient_log: bool
    sound_events: int

    def __init__(
        self,
        dp: Datapath,
        rng: Any = None,
        seed: int | None = None,
        cycles_per_frame: int = 15,
        tick_limit: int = 100000,
        pause_tick: int | None = None,
        lenient_log: bool = False,
    ) -> None:
        """Create a ControlUnit bound to `dp`.

        `rng` is the randomness source for RND; only `getrandbits(8)` is
        called on it. Without one a `random.Random(seed)` is created.
        """
        self.dp = dp
        self.rng = rng if rng is not None else random.Random(seed)
        self.cycles_per_frame = int(cycles_per_frame)
        self.tick_limit = int(tick_limit)
        self.pause_tick = pause_tick
        self.lenient_log = bool(lenient_log)
        self.sound_events = 0

    def _log_step(self, state: str, step: str, pc: int, instr: str) -> None:
        # skip verbose per-step logs in lenient mode to reduce log size
        if self.lenient_log:
            return
        dp = self.dp
        regs = " ".join(f"{v:02X}" for v in dp.V)
        logging.debug(
            "STATE: %-8s STEP: %-10s TICK: %5d PC: %03X I: %03X SP: %2d DT: %3d ST: %3d V: %s\tINSTR: %s",
            state,
            step,
            dp.tick,
            pc,
            dp.I,
            dp.SP,
            dp.DT,
            dp.ST,
            regs,
            instr,
        )

    def cycle(self) -> CycleState:
        """Fetch, decode and execute one instruction.

        Faults propagate to the caller with the machine left as it was before
        the instruction (PC points at the faulting instruction).
        """
        dp = self.dp
        addr = dp.PC
        word = dp.fetch_word()
        try:
            instr = decode_instr(word)
        except UnknownOpcodeError as e:
            raise DecodeFault(word, addr) from e

        dp.PC = (addr + INSTR_SIZE) & 0xFFFF
        try:
            state = self.exec(instr)
        except MachineFault:
            dp.PC = addr
            raise

        self._log_step(state.name, "EXECUTION", addr, mnemonic(instr))
        return state

    def tick_timers(self) -> bool:
        """Count both timers down by one. Return True on the sound timer's 1 -> 0 edge."""
        dp = self.dp
        if dp.DT > 0:
            dp.DT -= 1

        sound = False
        if dp.ST > 0:
            if dp.ST == 1:
                sound = True
                logging.debug("[tick %d] sound timer expired -> buzz", dp.tick)
            dp.ST -= 1
        return sound

    def _draw(self, instr: Instruction) -> None:
        dp = self.dp
        dp.check_range(dp.I, instr.n, "sprite read")
        x0 = dp.V[instr.x]
        y0 = dp.V[instr.y]
        collision = False
        for row in range(instr.n):
            bits = dp.memory[dp.I + row]
            for col in range(8):
                if bits & (0x80 >> col) and dp.toggle_pixel(x0 + col, y0 + row):
                    collision = True
        dp.V[FLAG_REG] = 1 if collision else 0

    def exec(self, instr: Instruction) -> CycleState:  # noqa: C901
        """Execute a single decoded instruction (PC already points past it)."""
        dp = self.dp
        op = instr.op
        x, y, nn, nnn = instr.x, instr.y, instr.nn, instr.nnn
        V = dp.V

        if op == OpCode.NOP:
            return CycleState.RUNNING
        if op == OpCode.CLS:
            dp.clear_screen()
            return CycleState.RUNNING
        if op == OpCode.RET:
            dp.PC = dp.call_pop()
            return CycleState.RUNNING
        if op == OpCode.JP:
            dp.PC = nnn
            return CycleState.RUNNING
        if op == OpCode.CALL:
            dp.call_push(dp.PC)
            dp.PC = nnn
            return CycleState.RUNNING
        if op == OpCode.SE_IMM:
            if V[x] == nn:
                dp.PC += INSTR_SIZE
            return CycleState.RUNNING
        if op == OpCode.SNE_IMM:
            if V[x] != nn:
                dp.PC += INSTR_SIZE
            return CycleState.RUNNING
        if op == OpCode.SE_REG:
            if V[x] == V[y]:
                dp.PC += INSTR_SIZE
            return CycleState.RUNNING
        if op == OpCode.SNE_REG:
            if V[x] != V[y]:
                dp.PC += INSTR_SIZE
            return CycleState.RUNNING
        if op == OpCode.LD_IMM:
            V[x] = nn
            return CycleState.RUNNING
        if op == OpCode.ADD_IMM:
            V[x] = (V[x] + nn) & 0xFF
            return CycleState.RUNNING

        # 8XY_ group: the flag is always written after the result, so it wins for x == F
        if op == OpCode.LD_REG:
            V[x] = V[y]
            return CycleState.RUNNING
        if op == OpCode.OR:
            V[x] |= V[y]
            return CycleState.RUNNING
        if op == OpCode.AND:
            V[x] &= V[y]
            return CycleState.RUNNING
        if op == OpCode.XOR:
            V[x] ^= V[y]
            return CycleState.RUNNING
        if op == OpCode.ADD_REG:
            total = V[x] + V[y]
            V[x] = total & 0xFF
            V[FLAG_REG] = 1 if total > 0xFF else 0
            return CycleState.RUNNING
        if op == OpCode.SUB_REG:
            no_borrow = V[x] >= V[y]
            V[x] = (V[x] - V[y]) & 0xFF
            V[FLAG_REG] = 1 if no_borrow else 0
            return CycleState.RUNNING
        if op == OpCode.SUBN_REG:
            no_borrow = V[y] >= V[x]
            V[x] = (V[y] - V[x]) & 0xFF
            V[FLAG_REG] = 1 if no_borrow else 0
            return CycleState.RUNNING
        if op == OpCode.SHR:
            dropped = V[x] & 0x01
            V[x] >>= 1
            V[FLAG_REG] = dropped
            return CycleState.RUNNING
        if op == OpCode.SHL:
            dropped = (V[x] >> 7) & 0x01
            V[x] = (V[x] << 1) & 0xFF
            V[FLAG_REG] = dropped
            return CycleState.RUNNING

        if op == OpCode.LD_I:
            dp.I = nnn
            return CycleState.RUNNING
        if op == OpCode.JP_V0:
            dp.PC = (V[0] + nnn) & 0xFFFF
            return CycleState.RUNNING
        if op == OpCode.RND:
            V[x] = self.rng.getrandbits(8) & nn
            return CycleState.RUNNING
        if op == OpCode.DRW:
            self._draw(instr)
            return CycleState.RUNNING

        if op == OpCode.SKP:
            if dp.keys[V[x] & 0xF]:
                dp.PC += INSTR_SIZE
            return CycleState.RUNNING
        if op == OpCode.SKNP:
            if not dp.keys[V[x] & 0xF]:
                dp.PC += INSTR_SIZE
            return CycleState.RUNNING
        if op == OpCode.LD_KEY:
            key = dp.pressed_key()
            if key is None:
                # re-run this instruction next cycle
                dp.PC -= INSTR_SIZE
                return CycleState.STALLED
            V[x] = key
            logging.debug("LD_KEY: got key %X", key)
            return CycleState.RUNNING

        if op == OpCode.LD_VX_DT:
            V[x] = dp.DT
            return CycleState.RUNNING
        if op == OpCode.LD_DT:
            dp.DT = V[x]
            return CycleState.RUNNING
        if op == OpCode.LD_ST:
            dp.ST = V[x]
            return CycleState.RUNNING
        if op == OpCode.ADD_I:
            dp.I = (dp.I + V[x]) & 0xFFFF
            return CycleState.RUNNING
        if op == OpCode.LD_FONT:
            dp.I = FONT_START + V[x] * GLYPH_SIZE
            return CycleState.RUNNING
        if op == OpCode.LD_BCD:
            dp.check_range(dp.I, 3, "BCD write")
            dp.memory[dp.I : dp.I + 3] = bytes(double_dabble(V[x]))
            return CycleState.RUNNING
        if op == OpCode.STORE_REGS:
            dp.check_range(dp.I, x + 1, "register store")
            dp.memory[dp.I : dp.I + x + 1] = bytes(V[: x + 1])
            return CycleState.RUNNING
        if op == OpCode.LOAD_REGS:
            dp.check_range(dp.I, x + 1, "register load")
            V[: x + 1] = list(dp.memory[dp.I : dp.I + x + 1])
            return CycleState.RUNNING

        msg = f"Unhandled opcode: {op}"
        raise NotImplementedError(msg)

    def run(self) -> tuple[str, int, str]:
        """Run cycles until tick limit, pause tick or a fault.

        Timers tick once every `cycles_per_frame` cycles. Returns
        (rendered display, ticks, state) where state is one of
        "stopped", "paused", "stalled" or "fault".
        """
        dp = self.dp
        state = "stopped"
        last = CycleState.RUNNING
        while dp.tick < self.tick_limit:
            if self.pause_tick is not None and dp.tick == self.pause_tick:
                self._log_step("PAUSED", "PAUSE_CHECK", dp.PC, "pause")
                state = "paused"
                break

            dp.apply_key_events(dp.tick)

            try:
                last = self.cycle()
            except MachineFault as e:
                logging.error("[tick %d] machine fault: %s", dp.tick, e)
                state = "fault"
                break

            dp.tick += 1
            if dp.tick % self.cycles_per_frame == 0 and self.tick_timers():
                self.sound_events += 1

        if state == "stopped" and last is CycleState.STALLED:
            state = "stalled"
        return render_display(dp.display()), dp.tick, state


# ---------- Public API ----------
def run_bytes(
    program: bytes,
    config: dict[str, Any] | None,
    key_schedule: list[tuple[int, KeySpec, bool]] | None = None,
) -> tuple[str, int, str, int]:
    """Run VM on given program and config and return (display, ticks, state, sound_events)."""
    cfg = load_config(config)
    dp = Datapath()
    dp.load(program)
    if key_schedule:
        dp.schedule_keys(key_schedule)
    cu = ControlUnit(
        dp,
        seed=cfg["seed"],
        cycles_per_frame=cfg["cycles_per_frame"],
        tick_limit=cfg["tick_limit"],
        pause_tick=cfg["pause_tick"],
        lenient_log=cfg["lenient_log"],
    )
    out, ticks, state = cu.run()
    return out, ticks, state, cu.sound_events


def parse_key_schedule_file(path: str) -> list[tuple[int, KeySpec, bool]]:
    """Parse key schedule file with lines "<tick> <key> [down|up]".

    Missing direction means "down". Lines starting with '#' are ignored.
    """
    result: list[tuple[int, KeySpec, bool]] = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split()
            try:
                tick = int(parts[0])
            except ValueError as e:
                err = f"Bad schedule line (bad tick): {line!r}"
                raise ValueError(err) from e
            if len(parts) < 2:
                err = f"Bad schedule line (no key): {line!r}"
                raise ValueError(err)
            direction = parts[2].lower() if len(parts) > 2 else "down"
            if direction not in ("down", "up"):
                err = f"Bad schedule line (direction must be down/up): {line!r}"
                raise ValueError(err)
            result.append((tick, parts[1], direction == "down"))
    return result


# ---------- CLI ----------
if __name__ == "__main__":
    import argparse

    ap = argparse.ArgumentParser(
        description="Headless VM runner. Loads a program image at 0x200, runs it and prints the final screen."
    )
    ap.add_argument("program", help="program image (raw binary).")
    ap.add_argument(
        "--key-schedule",
        help="key schedule file. Each non-empty line: '<tick> <key> [down|up]'",
        default=None,
    )
    ap.add_argument("--config", help="path to yaml config", default=None)

    help_debug = "enable debug logging to logfile (detailed per-step state)."
    help_logfile = "path to processor log"
    help_console = "also echo logs to console (only when --debug)"
    ap.add_argument("--debug", action="store_true", help=help_debug)
    ap.add_argument("--logfile", default=LOGFILE, help=help_logfile)
    ap.add_argument("--console", action="store_true", help=help_console)
    args = ap.parse_args()

    init_logging(logfile=args.logfile, debug=args.debug, console=args.console)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print("Bad config:", e)
        sys.exit(2)

    sched: list[tuple[int, KeySpec, bool]] = []
    if args.key_schedule:
        if not Path(args.key_schedule).exists():
            print("Key schedule file not found:", args.key_schedule)
            sys.exit(2)
        try:
            sched = parse_key_schedule_file(args.key_schedule)
            logging.debug("CLI: parsed key schedule from %s: %r", args.key_schedule, sched)
        except ValueError as e:
            print("Bad key schedule:", e)
            sys.exit(2)

    code_path = Path(args.program)
    if not code_path.exists():
        print("Program file not found:", args.program)
        sys.exit(2)

    try:
        out, ticks, state, beeps = run_bytes(code_path.read_bytes(), cfg, sched)
    except (MachineFault, ValueError) as e:
        print("Cannot run program:", e)
        sys.exit(1)

    sys.stdout.write(out)
    sys.stdout.write("\n")
    sys.stdout.write("TICKS: " + str(ticks) + "\n")
    sys.stdout.write("STATE: " + state + "\n")
    sys.stdout.write("BEEPS: " + str(beeps) + "\n")
    if state == "fault":
        sys.exit(1)
