"""Processor (Datapath + ControlUnit) and CLI wrapper.

The Datapath owns every piece of CHIP-8 machine state (memory, registers,
call stack, timers, keypad and framebuffer). The ControlUnit performs one
fetch-decode-execute cycle per `step()` call and leaves pacing, rendering
and key polling to the caller.
"""

from __future__ import annotations

import logging
import random
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from config import DEFAULTS, ConfigError, load_config
from isa import INSTR_SIZE, Chip8Error, Instr, OpCode, UnknownInstruction, decode_instr, mnemonic

LOGFILE = "processor.log"

MEM_SIZE = 4096
PROGRAM_START = 0x200
MAX_ROM_SIZE = MEM_SIZE - PROGRAM_START

SCREEN_WIDTH = 64
SCREEN_HEIGHT = 32
NUM_KEYS = 16
NUM_REGS = 16
STACK_DEPTH = 16

GLYPH_SIZE = 5
FONT_SET = bytes(
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
)  # fmt: skip


class RomTooLarge(Chip8Error):
    """Raised by Datapath.load when the image does not fit above 0x200."""

    def __init__(self, size: int) -> None:
        super().__init__(f"ROM too big for memory: {size} bytes (max {MAX_ROM_SIZE})")
        self.size = size


def init_logging(logfile: str = LOGFILE, debug: bool = False, console: bool = False) -> None:
    """Configure root logger to write to `logfile`.

    If debug=True set DEBUG level. If console=True also echo logs to stdout.
    In debug mode the file format carries no timestamp so that per-step
    lines stay comparable between runs.
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    lvl = logging.DEBUG if debug else logging.WARNING
    root.setLevel(lvl)

    if debug:
        file_fmt = "%(levelname)s %(name)s:%(filename)s:%(lineno)d %(message)s"
    else:
        file_fmt = "%(asctime)s %(levelname)-7s %(message)s"

    fh = logging.FileHandler(logfile, mode="w", encoding="utf-8")
    fh.setLevel(lvl)
    fh.setFormatter(logging.Formatter(file_fmt))
    root.addHandler(fh)

    if console:
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(lvl)
        ch.setFormatter(logging.Formatter("%(levelname)7s %(message)s"))
        root.addHandler(ch)


class Datapath:
    """Datapath (memory + registers + timers + keypad + framebuffer) for the VM."""

    memory: bytearray
    V: list[int]
    I: int  # noqa: E741
    PC: int
    stack: list[int]
    SP: int

    delay_timer: int
    sound_timer: int

    keys: list[bool]
    gfx: list[int]
    draw_flag: bool

    # target register of a pending FX0A, None when not waiting
    awaiting_key: int | None

    tick: int
    pause_tick: int | None
    lenient_log: bool
    input_schedule: list[tuple[int, list[int]]]
    rng: random.Random

    def __init__(
        self,
        initial_timer: int = 60,
        seed: int | None = None,
        pause_tick: int | None = None,
        lenient_log: bool = False,
    ) -> None:
        """Initialize Datapath state: zeroed memory with the font at 0x000."""
        self.memory = bytearray(MEM_SIZE)
        self.memory[0 : len(FONT_SET)] = FONT_SET

        self.V = [0] * NUM_REGS
        self.I = 0
        self.PC = PROGRAM_START
        self.stack = [0] * STACK_DEPTH
        self.SP = 0

        self.delay_timer = initial_timer & 0xFF
        self.sound_timer = initial_timer & 0xFF

        self.keys = [False] * NUM_KEYS
        self.gfx = [0] * (SCREEN_WIDTH * SCREEN_HEIGHT)
        self.draw_flag = False
        self.awaiting_key = None

        self.tick = 0
        self.pause_tick = pause_tick
        self.lenient_log = bool(lenient_log)
        self.input_schedule = []
        self.rng = random.Random(seed)

    def load(self, rom: bytes | bytearray) -> None:
        """Copy a program image into memory at 0x200.

        Raises RomTooLarge (memory untouched) if the image exceeds 3584 bytes.
        """
        size = len(rom)
        if size > MAX_ROM_SIZE:
            logging.debug("Datapath.load: rejected %d-byte image", size)
            raise RomTooLarge(size)
        self.memory[PROGRAM_START : PROGRAM_START + size] = rom
        logging.debug("Datapath.load: %d bytes at 0x%03X", size, PROGRAM_START)

    # memory helpers: addresses wrap at the end of the 4 KiB space
    def read_byte(self, addr: int) -> int:
        return self.memory[addr % MEM_SIZE]

    def write_byte(self, addr: int, value: int) -> None:
        self.memory[addr % MEM_SIZE] = value & 0xFF

    def set_reg(self, x: int, value: int) -> None:
        self.V[x] = value & 0xFF

    def set_flag(self, flag: bool | int) -> None:
        """Write VF; every flag-producing instruction goes through here."""
        self.V[0xF] = 1 if flag else 0

    # --- call-stack helpers (return-address stack) ---
    def call_push(self, addr: int) -> None:
        """Push a return address. Overflow is logged and the push ignored."""
        if self.SP >= STACK_DEPTH:
            logging.warning("call_push: call-stack overflow at SP=%d; push of 0x%03X ignored", self.SP, addr)
            return
        self.stack[self.SP] = addr
        self.SP += 1

    def call_pop(self) -> int:
        """Pop a return address. Return 0 on underflow."""
        if self.SP == 0:
            logging.warning("call_pop: call-stack underflow -> returning 0")
            return 0
        self.SP -= 1
        return self.stack[self.SP]

    # --- keypad ---
    def set_keys(self, states: Iterable[bool | int]) -> None:
        """Overwrite all 16 key states at once."""
        new = [bool(s) for s in states]
        if len(new) != NUM_KEYS:
            err = f"expected {NUM_KEYS} key states, got {len(new)}"
            raise ValueError(err)
        self.keys = new

    def pressed_key(self) -> int | None:
        """Return the highest-indexed pressed key, or None."""
        pressed = None
        for i, down in enumerate(self.keys):
            if down:
                pressed = i
        return pressed

    def clear_screen(self) -> None:
        self.gfx = [0] * (SCREEN_WIDTH * SCREEN_HEIGHT)
        self.draw_flag = True

    def tick_timers(self) -> bool:
        """Decrement both timers; return True on the sound timer's 1 -> 0 edge."""
        if self.delay_timer > 0:
            self.delay_timer -= 1
        tone = False
        if self.sound_timer > 0:
            tone = self.sound_timer == 1
            self.sound_timer -= 1
        return tone

    # --- input schedule (headless input provider) ---
    def schedule_input(self, schedule: Iterable[tuple[int, Iterable[int]]]) -> None:
        """Attach an input schedule: list of (tick, pressed key indices).

        At the given tick the key state is overwritten with exactly those
        keys and held until the next entry.
        """
        self.input_schedule = sorted(((int(t), [int(k) for k in ks]) for t, ks in schedule), key=lambda e: e[0])
        logging.debug(
            "Datapath.schedule_input called, %d events attached",
            len(self.input_schedule),
        )

    def apply_input(self) -> None:
        """Apply every schedule entry due at or before the current tick."""
        while self.input_schedule and self.input_schedule[0][0] <= self.tick:
            t, pressed = self.input_schedule.pop(0)
            states = [False] * NUM_KEYS
            for k in pressed:
                states[k & 0xF] = True
            self.set_keys(states)
            logging.debug("[tick %d] keys set: %s", self.tick, [f"{k:X}" for k in pressed])


class ControlUnit:
    """Control unit implementing the FETCH-DECODE-EXEC cycle for the Datapath."""

    dp: Datapath

    def __init__(self, dp: Datapath) -> None:
        """Create a ControlUnit bound to `dp`."""
        self.dp = dp

    def _log_step(self, state: str, instr: str) -> None:
        # skip verbose per-step logs in lenient mode to reduce log size
        if self.dp.lenient_log or not logging.getLogger().isEnabledFor(logging.DEBUG):
            return
        dp = self.dp
        regs = " ".join(f"{v:02X}" for v in dp.V)
        logging.debug(
            "STATE: %-10s TICK: %4d PC: 0x%03X I: 0x%03X SP: %2d DT: %3d ST: %3d V: %s\tINSTR: %s",
            state,
            dp.tick,
            dp.PC,
            dp.I,
            dp.SP,
            dp.delay_timer,
            dp.sound_timer,
            regs,
            instr,
        )

    def step(self) -> bool:
        """Run one VM cycle. Return True when a tone edge fired this cycle."""
        dp = self.dp
        if dp.awaiting_key is not None:
            self._resume_key_wait()
        else:
            try:
                instr = decode_instr(dp.memory, dp.PC)
            except UnknownInstruction as e:
                logging.warning("%s at PC 0x%03X -> treated as no-op", e, dp.PC)
                dp.PC += INSTR_SIZE
            else:
                self._log_step("RUNNING", mnemonic(instr))
                dp.PC += INSTR_SIZE
                self.exec(instr)

        tone = dp.tick_timers()
        if tone:
            logging.debug("[tick %d] tone", dp.tick)
        dp.tick += 1
        return tone

    def _resume_key_wait(self) -> None:
        dp = self.dp
        key = dp.pressed_key()
        if key is None:
            self._log_step("AWAIT_KEY", f"LD_KEY V{dp.awaiting_key:X}")
            return
        logging.debug("[tick %d] key %X pressed -> V%X", dp.tick, key, dp.awaiting_key)
        dp.set_reg(dp.awaiting_key, key)
        dp.awaiting_key = None
        dp.PC += INSTR_SIZE

    def run(self, cycles: int) -> tuple[int, int, str]:
        """Step the datapath up to `cycles` times.

        Scheduled input is applied before each cycle. Returns
        (tone edges, ticks, state).
        """
        dp = self.dp
        tones = 0
        for _ in range(cycles):
            if dp.pause_tick is not None and dp.tick == dp.pause_tick:
                self._log_step("PAUSED", "pause")
                return tones, dp.tick, "paused"
            dp.apply_input()
            if self.step():
                tones += 1
        if dp.awaiting_key is not None:
            return tones, dp.tick, "awaiting_key"
        return tones, dp.tick, "stopped"

    def _skip_if(self, cond: bool) -> None:
        if cond:
            self.dp.PC += INSTR_SIZE

    def exec(self, instr: Instr) -> None:  # noqa: C901
        """Execute a single decoded instruction; PC already points past it."""
        dp = self.dp
        op = instr.opcode
        x, y = instr.x, instr.y

        if op == OpCode.CLS:
            dp.clear_screen()
            return
        if op == OpCode.RET:
            dp.PC = dp.call_pop() + INSTR_SIZE
            return
        if op == OpCode.JP:
            dp.PC = instr.nnn
            return
        if op == OpCode.CALL:
            # the stack keeps the address of the call itself; RET adds INSTR_SIZE
            dp.call_push(dp.PC - INSTR_SIZE)
            dp.PC = instr.nnn
            return
        if op == OpCode.JP_V0:
            dp.PC = dp.V[0] + instr.nnn
            return

        if op == OpCode.SE_IMM:
            self._skip_if(dp.V[x] == instr.nn)
            return
        if op == OpCode.SNE_IMM:
            self._skip_if(dp.V[x] != instr.nn)
            return
        if op == OpCode.SE_REG:
            self._skip_if(dp.V[x] == dp.V[y])
            return
        if op == OpCode.SNE_REG:
            self._skip_if(dp.V[x] != dp.V[y])
            return

        if op == OpCode.LD_IMM:
            dp.set_reg(x, instr.nn)
            return
        if op == OpCode.ADD_IMM:
            dp.set_reg(x, dp.V[x] + instr.nn)
            return

        if OpCode.LD_REG <= op <= OpCode.SHL:
            self._exec_alu(op, x, y)
            return

        if op == OpCode.LD_I:
            dp.I = instr.nnn
            return
        if op == OpCode.RND:
            dp.set_reg(x, dp.rng.randrange(256) & instr.nn)
            return
        if op == OpCode.DRW:
            self._draw(dp.V[x], dp.V[y], instr.n)
            return

        if op == OpCode.SKP:
            self._skip_if(dp.keys[dp.V[x] & 0xF])
            return
        if op == OpCode.SKNP:
            self._skip_if(not dp.keys[dp.V[x] & 0xF])
            return

        self._exec_misc(op, x)

    def _exec_alu(self, op: OpCode, x: int, y: int) -> None:
        """8XYN register-to-register family. VF is written before VX."""
        dp = self.dp
        if op == OpCode.LD_REG:
            dp.set_reg(x, dp.V[y])
        elif op == OpCode.OR:
            dp.set_reg(x, dp.V[x] | dp.V[y])
        elif op == OpCode.AND:
            dp.set_reg(x, dp.V[x] & dp.V[y])
        elif op == OpCode.XOR:
            dp.set_reg(x, dp.V[x] ^ dp.V[y])
        elif op == OpCode.ADD_REG:
            dp.set_flag(dp.V[y] > 0xFF - dp.V[x])
            dp.set_reg(x, dp.V[x] + dp.V[y])
        elif op == OpCode.SUB:
            dp.set_flag(dp.V[y] <= dp.V[x])
            dp.set_reg(x, dp.V[x] - dp.V[y])
        elif op == OpCode.SHR:
            dp.set_flag(dp.V[x] & 0x1)
            dp.set_reg(x, dp.V[x] >> 1)
        elif op == OpCode.SUBN:
            dp.set_flag(not dp.V[x] > dp.V[y])
            dp.set_reg(x, dp.V[y] - dp.V[x])
        elif op == OpCode.SHL:
            dp.set_flag(dp.V[x] >> 7)
            dp.set_reg(x, dp.V[x] << 1)

    def _exec_misc(self, op: OpCode, x: int) -> None:
        """EX/FX timer, key, index and memory-transfer family."""
        dp = self.dp
        if op == OpCode.LD_DT:
            dp.set_reg(x, dp.delay_timer)
        elif op == OpCode.LD_KEY:
            key = dp.pressed_key()
            if key is None:
                # no key yet: stay on this instruction until one is pressed
                logging.debug("LD_KEY: no key pressed -> waiting")
                dp.PC -= INSTR_SIZE
                dp.awaiting_key = x
            else:
                dp.set_reg(x, key)
        elif op == OpCode.SET_DT:
            dp.delay_timer = dp.V[x]
        elif op == OpCode.SET_ST:
            dp.sound_timer = dp.V[x]
        elif op == OpCode.ADD_I:
            dp.set_flag(dp.I + dp.V[x] > 0xFFF)
            dp.I = (dp.I + dp.V[x]) & 0xFFFF
        elif op == OpCode.LD_FONT:
            dp.I = (dp.V[x] & 0xF) * GLYPH_SIZE
        elif op == OpCode.BCD:
            v = dp.V[x]
            dp.write_byte(dp.I, v // 100)
            dp.write_byte(dp.I + 1, (v // 10) % 10)
            dp.write_byte(dp.I + 2, v % 10)
        elif op == OpCode.STORE:
            for i in range(x + 1):
                dp.write_byte(dp.I + i, dp.V[i])
            dp.I = (dp.I + x + 1) & 0xFFFF
        elif op == OpCode.LOAD:
            for i in range(x + 1):
                dp.V[i] = dp.read_byte(dp.I + i)
            dp.I = (dp.I + x + 1) & 0xFFFF
        else:
            logging.debug("Unhandled opcode: %s", op)

    def _draw(self, vx: int, vy: int, height: int) -> None:
        """XOR an 8-pixel-wide sprite from memory[I..] onto the framebuffer.

        Cell index is x + col + (y + row) * 64, wrapping around the whole
        2048-cell buffer. VF collects collisions over the entire sprite.
        """
        dp = self.dp
        cells = len(dp.gfx)
        collision = False
        for row in range(height):
            bits = dp.read_byte(dp.I + row)
            for col in range(8):
                if bits & (0x80 >> col):
                    idx = (vx + col + (vy + row) * SCREEN_WIDTH) % cells
                    if dp.gfx[idx] == 1:
                        collision = True
                    dp.gfx[idx] ^= 1
        dp.set_flag(collision)
        dp.draw_flag = True


# ---------- Host glue ----------
def render_screen(dp: Datapath, on: str = "#", off: str = ".") -> str:
    """Render the framebuffer as 32 lines of 64 characters and clear the draw flag."""
    lines = []
    for y in range(SCREEN_HEIGHT):
        row = dp.gfx[y * SCREEN_WIDTH : (y + 1) * SCREEN_WIDTH]
        lines.append("".join(on if c else off for c in row))
    dp.draw_flag = False
    return "\n".join(lines)


def map_keys(chars: str, key_map: dict[str, int]) -> list[int]:
    """Translate host keyboard characters into keypad indices.

    Characters missing from `key_map` raise ValueError.
    """
    keys: list[int] = []
    for ch in chars.lower():
        if ch.isspace():
            continue
        if ch not in key_map:
            err = f"Unmapped key: {ch!r}"
            raise ValueError(err)
        keys.append(key_map[ch])
    return keys


def parse_schedule_file(path: str, key_map: dict[str, int]) -> list[tuple[int, list[int]]]:
    """Parse schedule file with lines "<tick> [keys]".

    A line with a tick and no keys releases every key.
    Returns list of (tick, key indices).
    """
    result: list[tuple[int, list[int]]] = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split(None, 1)
            try:
                tick = int(parts[0])
            except ValueError as e:
                err = f"Bad schedule line (bad tick): {line!r}"
                raise ValueError(err) from e
            chars = parts[1] if len(parts) > 1 else ""
            result.append((tick, map_keys(chars, key_map)))
    return result


# ---------- Public API ----------
def build_datapath(code_bytes: bytes, cfg: dict[str, Any]) -> Datapath:
    """Create a Datapath from a normalized config and load `code_bytes` into it."""
    dp = Datapath(
        initial_timer=cfg.get("initial_timer", DEFAULTS["initial_timer"]),
        seed=cfg.get("seed"),
        pause_tick=cfg.get("pause_tick"),
        lenient_log=cfg.get("lenient_log", False),
    )
    dp.load(code_bytes)
    return dp


def run_bytes(
    code_bytes: bytes,
    config: dict[str, Any] | None,
    input_schedule: list[tuple[int, list[int]]] | None = None,
    cycles: int | None = None,
) -> tuple[Datapath, int, int, str]:
    """Run the VM on a program image and return (datapath, tones, ticks, state)."""
    cfg = load_config(config)
    dp = build_datapath(code_bytes, cfg)
    if input_schedule:
        dp.schedule_input(input_schedule)
    cu = ControlUnit(dp)
    tones, ticks, state = cu.run(cfg["cycle_limit"] if cycles is None else cycles)
    return dp, tones, ticks, state


# ---------- CLI ----------
if __name__ == "__main__":
    import argparse

    ap = argparse.ArgumentParser(
        description="Headless CHIP-8 runner. Loads a ROM image at 0x200, runs it for a number of "
        "cycles and prints the final screen. Keys are supplied via --input-schedule."
    )
    ap.add_argument("program", help="program.ch8 (raw binary image).")
    ap.add_argument("--cycles", type=int, default=None, help="number of cycles (default: config cycle_limit)")
    ap.add_argument(
        "--input-schedule",
        help="input schedule file. Each non-empty line: '<tick> <keys>' using key_map characters",
        default=None,
    )
    ap.add_argument("--config", help="path to yaml config", default=None)

    help_debug = "enable debug logging to logfile (detailed per-step state)."
    help_logfile = "path to processor log"
    help_console = "also echo logs to console"
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

    sched: list[tuple[int, list[int]]] = []
    if args.input_schedule:
        if not Path(args.input_schedule).exists():
            print("Input schedule file not found:", args.input_schedule)
            sys.exit(2)
        try:
            sched = parse_schedule_file(args.input_schedule, cfg["key_map"])
            logging.debug("CLI: parsed schedule from %s: %r", args.input_schedule, sched)
        except ValueError as e:
            print("Bad input schedule:", e)
            sys.exit(2)

    code_path = Path(args.program)
    if not code_path.exists():
        print("Program file not found:", args.program)
        sys.exit(2)

    try:
        dp, tones, ticks, state = run_bytes(code_path.read_bytes(), cfg, sched, args.cycles)
    except RomTooLarge as e:
        print("Error:", e)
        sys.exit(2)

    sys.stdout.write(render_screen(dp, cfg["screen_on"], cfg["screen_off"]))
    sys.stdout.write("\n")
    sys.stdout.write(f"TONES: {tones}\n")
    sys.stdout.write(f"TICKS: {ticks} ({state})\n")
