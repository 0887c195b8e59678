import sys
import os
import enum
import hmac
import hashlib
import logging
import re
import secrets
from dataclasses import dataclass, field
from typing import Callable, Optional
from tabulate import tabulate, TableFormat, DataRow

logger = logging.getLogger(__name__)

# ==============================================================================
# 0. Configuration
# ==============================================================================

MIN_DICE = 3
MIN_FACES = 4
KEY_BYTES = 32
ENTROPY_BYTES = 32
HMAC_ALGORITHM = hashlib.sha3_256
EXIT_TOKEN = "x"
HELP_TOKEN = "?"
LOG_LEVEL_ENV = "FAIR_DICE_LOG_LEVEL"
DEFAULT_LOG_LEVEL = logging.WARNING
FACE_PATTERN = re.compile(r"-?[0-9]+")
SELECTION_PATTERN = re.compile(r"[0-9]+")
EXAMPLE_DICE = "2,2,4,4,9,9 6,8,1,1,8,6 7,5,3,7,5,3"

# ==============================================================================
# 1. Error Handling Classes
# ==============================================================================

class ConfigError(Exception):
    """
    Raised when the dice given on the command line are not usable.
    Its string form carries an example of a correct invocation.
    """
    _invocation_command = "python"

    @staticmethod
    def set_invocation_command(command: str):
        """Sets the command used to run the script (e.g., 'python' or 'py')."""
        ConfigError._invocation_command = command

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        script_name = sys.argv[0] if sys.argv else 'fair_dice.py'
        example = f"{ConfigError._invocation_command} {script_name} {EXAMPLE_DICE}"
        return f"\nArgument Error: {self.message}\n\nExample usage:\n{example}\n"


class InvalidSelection(ValueError):
    """Console input that is neither a valid option, help, nor exit."""


class InvalidRange(ValueError):
    """A non-positive range reached the random source."""


class ExitRequested(Exception):
    """The user asked to leave the game at a prompt."""

# ==============================================================================
# 2. Data Structure for a Die
# ==============================================================================

class Die:
    def __init__(self, faces):
        if not faces:
            raise ValueError("A die must have at least one face.")
        self._faces = tuple(faces)

    @property
    def faces(self) -> tuple:
        return self._faces

    def roll(self, index: int) -> int:
        if not 0 <= index < len(self._faces):
            raise IndexError(f"Face index {index} is out of range for a {len(self)}-sided die.")
        return self._faces[index]

    def __str__(self) -> str:
        return ",".join(map(str, self._faces))

    def __len__(self) -> int:
        return len(self._faces)

# ==============================================================================
# 3. Command-Line Argument Parser
# ==============================================================================

class DiceParser:
    @staticmethod
    def parse(args: list[str]) -> list[Die]:
        if len(args) < MIN_DICE:
            raise ConfigError(f"Please specify at least {MIN_DICE} dice, got {len(args)}.")
        return [DiceParser._parse_die(arg) for arg in args]

    @staticmethod
    def _parse_die(arg: str) -> Die:
        faces = []
        for token in arg.split(','):
            if not FACE_PATTERN.fullmatch(token.strip()):
                raise ConfigError(f'Invalid value "{token}" in dice configuration "{arg}". '
                                  f'All dice faces must be integer values.')
            faces.append(int(token.strip()))
        if len(faces) < MIN_FACES:
            raise ConfigError(f'Dice "{arg}" has {len(faces)} faces; '
                              f'each dice must have at least {MIN_FACES} faces.')
        return Die(faces)

# ==============================================================================
# 4. Cryptographic Operations Provider
# ==============================================================================

class CryptoProvider:
    """
    Source of keys, unbiased random integers and HMAC commitments.

    The byte source defaults to ``secrets.token_bytes``; every call asks it for
    fresh bytes, nothing is cached between draws.
    """

    def __init__(self, byte_source: Callable[[int], bytes] = secrets.token_bytes):
        self._byte_source = byte_source

    def generate_key(self) -> bytes:
        return self._byte_source(KEY_BYTES)

    def generate_uniform(self, max_val: int) -> int:
        """
        Returns an integer in [0, max_val) by rejection sampling over 256-bit
        blocks. Blocks at or above the largest multiple of max_val are
        discarded, so ``x % max_val`` is exactly uniform.
        """
        if not isinstance(max_val, int) or max_val <= 0:
            raise InvalidRange(f"Range must be a positive integer, got {max_val!r}.")
        space = 1 << (8 * ENTROPY_BYTES)
        limit = (space // max_val) * max_val
        while True:
            x = int.from_bytes(self._byte_source(ENTROPY_BYTES), 'big')
            if x < limit:
                return x % max_val
            logger.debug("Rejected out-of-limit draw for range %d", max_val)

    @staticmethod
    def calculate_hmac(key: bytes, message_int: int) -> str:
        message_bytes = str(message_int).encode('utf-8')
        h = hmac.new(key, message_bytes, HMAC_ALGORITHM)
        return h.hexdigest().upper()

    @staticmethod
    def verify_hmac(key: bytes, message_int: int, expected_hmac: str) -> bool:
        actual = CryptoProvider.calculate_hmac(key, message_int)
        return hmac.compare_digest(actual, expected_hmac.upper())

# ==============================================================================
# 5. Probability Calculation Logic
# ==============================================================================

class ProbabilityCalculator:
    @staticmethod
    def calculate_win_probability(die1: Die, die2: Die) -> float:
        """Percentage of face pairs where die1 rolls strictly higher. Ties count as losses."""
        wins = sum(1 for f1 in die1.faces for f2 in die2.faces if f1 > f2)
        total_outcomes = len(die1) * len(die2)
        return 100 * wins / total_outcomes if total_outcomes > 0 else 0.0

# ==============================================================================
# 6. Help Table Generation
# ==============================================================================

# Borderless, left-aligned columns separated by " | ".
PIPE_SEPARATED = TableFormat(
    lineabove=None,
    linebelowheader=None,
    linebetweenrows=None,
    linebelow=None,
    headerrow=DataRow("", " | ", ""),
    datarow=DataRow("", " | ", ""),
    padding=0,
    with_header_hide=None,
)


class HelpTableGenerator:
    HEADER = ["Dice Pair", "Win Probability"]
    INTRO = "Probability of the win for the first die in each pair:"

    @staticmethod
    def generate_table(all_dice: list[Die]) -> str:
        table_data = [HelpTableGenerator.HEADER]
        for i in range(len(all_dice)):
            for j in range(i + 1, len(all_dice)):
                prob = ProbabilityCalculator.calculate_win_probability(all_dice[i], all_dice[j])
                table_data.append([f"{i}-{j}", f"{prob:.2f}%"])
        # The header goes in as a plain row so it is padded like the data.
        rendered = tabulate(table_data, tablefmt=PIPE_SEPARATED,
                            stralign="left", disable_numparse=True)
        # tabulate strips trailing spaces; pad the last column back out.
        lines = rendered.split("\n")
        width = max(len(line) for line in lines)
        return "\n".join(line.ljust(width) for line in lines)

# ==============================================================================
# 7. Console User Interface
# ==============================================================================

class GameUI:
    def __init__(self, reader: Callable[[str], str] = input,
                 writer: Callable[[str], None] = print,
                 flusher: Optional[Callable[[], None]] = None):
        self._read = reader
        self._write = writer
        self._flush = flusher

    def display_message(self, text: str):
        self._write(text)

    def display_commit(self, max_val: int, hmac_hex: str):
        self._write(f"I selected a random value in the range 0..{max_val - 1} (HMAC={hmac_hex}).")

    def display_reveal(self, result: "RoundResult"):
        self._write(f"My number is {result.own_value} (KEY={result.key.hex().upper()}).")
        self._write(f"The fair number generation result is {result.own_value} + "
                    f"{result.counterpart_value} = {result.result} (mod {result.range}).")

    @staticmethod
    def parse_selection(choice: str, option_count: int) -> int:
        if not SELECTION_PATTERN.fullmatch(choice):
            raise InvalidSelection(f"Not a number: {choice!r}")
        value = int(choice)
        if not 0 <= value < option_count:
            raise InvalidSelection(f"{value} is outside 0..{option_count - 1}")
        return value

    def prompt_selection(self, options: list[str], on_help: Callable[[], None]) -> int:
        """
        Shows the numbered options and reads until a valid index is entered.
        Help is served in place; the exit token raises ExitRequested.
        """
        while True:
            for i, option in enumerate(options):
                self._write(f"{i} - {option}")
            self._write("X - exit")
            self._write("? - help")

            choice = self._read("Your selection: ").strip()

            if choice.lower() == EXIT_TOKEN:
                raise ExitRequested()
            if choice == HELP_TOKEN:
                on_help()
                continue
            try:
                return self.parse_selection(choice, len(options))
            except InvalidSelection as e:
                logger.debug("Rejected selection: %s", e)
                self._write("Invalid selection. Try again.")

    def flush(self):
        if self._flush is not None:
            self._flush()
        elif self._write is print:
            sys.stdout.flush()

# ==============================================================================
# 8. Provably Fair Random Number Generation
# ==============================================================================

@dataclass(frozen=True)
class SecretCommitment:
    range: int
    value: int
    key: bytes = field(repr=False)
    hmac: str


@dataclass(frozen=True)
class RoundResult:
    range: int
    own_value: int
    counterpart_value: int
    result: int
    key: bytes
    hmac: str

    def verify(self) -> bool:
        """Recomputes the HMAC from the revealed key and value."""
        return CryptoProvider.verify_hmac(self.key, self.own_value, self.hmac)


class FairNumberProtocol:
    """
    One commit-reveal round producing a number in [0, range) that neither
    side can bias: the computer's value is fixed and its HMAC shown before
    the user answers, and the key is revealed afterwards for checking.
    """

    def __init__(self, crypto_provider: CryptoProvider, ui: GameUI):
        self.crypto = crypto_provider
        self.ui = ui

    def begin(self, max_val: int) -> SecretCommitment:
        value = self.crypto.generate_uniform(max_val)
        key = self.crypto.generate_key()
        commitment = SecretCommitment(max_val, value, key, self.crypto.calculate_hmac(key, value))
        logger.debug("Committed to a value in range %d (HMAC=%s)", max_val, commitment.hmac)
        return commitment

    def receive_counterpart(self, commitment: SecretCommitment) -> int:
        max_val = commitment.range
        self.ui.display_commit(max_val, commitment.hmac)
        self.ui.display_message(f"Add your number modulo {max_val}.")

        def show_help():
            self.ui.display_message(f"Help: select a number between 0 and {max_val - 1}.")

        value = self.ui.prompt_selection([str(i) for i in range(max_val)], show_help)
        logger.debug("Accepted counterpart value %d", value)
        return value

    def resolve(self, commitment: SecretCommitment, counterpart_value: int) -> RoundResult:
        result = RoundResult(
            range=commitment.range,
            own_value=commitment.value,
            counterpart_value=counterpart_value,
            result=(commitment.value + counterpart_value) % commitment.range,
            key=commitment.key,
            hmac=commitment.hmac,
        )
        self.ui.display_reveal(result)
        logger.debug("Resolved fair number %d (mod %d)", result.result, result.range)
        return result

    def generate(self, max_val: int) -> RoundResult:
        commitment = self.begin(max_val)
        counterpart_value = self.receive_counterpart(commitment)
        return self.resolve(commitment, counterpart_value)

# ==============================================================================
# 9. Game Session and State Machine
# ==============================================================================

class GameState(enum.Enum):
    DETERMINE_ORDER = "determine_order"
    COMPUTER_FIRST = "computer_first"
    USER_FIRST = "user_first"
    COMPUTER_ROUND = "computer_round"
    USER_ROUND = "user_round"
    DONE = "done"
    ABORTED = "aborted"


class GameSession:
    """
    Everything one game needs: the dice, the console and the entropy source.
    Used as a context manager so the console is released on every exit path.
    """

    def __init__(self, dice: list[Die], ui: Optional[GameUI] = None,
                 crypto: Optional[CryptoProvider] = None):
        self.dice = list(dice)
        self.ui = ui or GameUI()
        self.crypto = crypto or CryptoProvider()
        self.results: list[RoundResult] = []

    def __enter__(self):
        logger.debug("Session started with %d dice", len(self.dice))
        return self

    def __exit__(self, exc_type, exc, tb):
        self.ui.flush()
        logger.debug("Session closed (%s)", exc_type.__name__ if exc_type else "completed")
        return False


class GameController:
    def __init__(self, session: GameSession):
        self.session = session
        self.ui = session.ui
        self.protocol = FairNumberProtocol(session.crypto, session.ui)
        self.state = GameState.DETERMINE_ORDER
        self.computer_first: Optional[bool] = None
        self.computer_roll: Optional[int] = None
        self.user_roll: Optional[int] = None

    def _transition(self, state: GameState):
        logger.debug("State %s -> %s", self.state.name, state.name)
        self.state = state

    def _fair_number(self, max_val: int) -> int:
        result = self.protocol.generate(max_val)
        self.session.results.append(result)
        return result.result

    def run(self):
        try:
            self._determine_order()
            if self.computer_first:
                self._computer_round()
                self._user_round()
            else:
                self._user_round()
                self._computer_round()
            self._transition(GameState.DONE)
            self._announce_winner()
        except ExitRequested:
            self._transition(GameState.ABORTED)
            raise

    def _determine_order(self):
        self.ui.display_message("Let's determine who makes the first move.")
        self.computer_first = self._fair_number(2) == 1
        if self.computer_first:
            self._transition(GameState.COMPUTER_FIRST)
            self.ui.display_message("I make the first move.")
        else:
            self._transition(GameState.USER_FIRST)
            self.ui.display_message("You make the first move.")

    def _computer_round(self):
        self._transition(GameState.COMPUTER_ROUND)
        dice = self.session.dice
        computer_die = dice[self.session.crypto.generate_uniform(len(dice))]
        self.ui.display_message(f"I choose the [{computer_die}] dice.")
        self.ui.display_message("It's time for my roll.")
        self.computer_roll = computer_die.roll(self._fair_number(len(computer_die)))
        self.ui.display_message(f"My roll result is {self.computer_roll}.")

    def _user_round(self):
        self._transition(GameState.USER_ROUND)
        player_die = self._get_player_die_choice()
        self.ui.display_message(f"You choose the [{player_die}] dice.")
        self.ui.display_message("It's time for your roll.")
        self.user_roll = player_die.roll(self._fair_number(len(player_die)))
        self.ui.display_message(f"Your roll result is {self.user_roll}.")

    def _get_player_die_choice(self) -> Die:
        dice = self.session.dice
        self.ui.display_message("Choose your dice:")
        index = self.ui.prompt_selection([str(d) for d in dice], self._show_help_table)
        return dice[index]

    def _show_help_table(self):
        self.ui.display_message(HelpTableGenerator.INTRO)
        self.ui.display_message(HelpTableGenerator.generate_table(self.session.dice))

    def _announce_winner(self):
        user, computer = self.user_roll, self.computer_roll
        if user > computer:
            self.ui.display_message(f"You win ({user} > {computer})!")
        elif computer > user:
            self.ui.display_message(f"I win ({computer} > {user})!")
        else:
            self.ui.display_message(f"It's a draw ({user} = {computer})!")

# ==============================================================================
# 10. Main Execution Block
# ==============================================================================

def resolve_log_level(value: Optional[str]) -> int:
    """Maps a level name or number to a logging level, falling back to WARNING."""
    if not value:
        return DEFAULT_LOG_LEVEL
    value = value.strip()
    if SELECTION_PATTERN.fullmatch(value):
        return int(value)
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else DEFAULT_LOG_LEVEL


def main(argv: Optional[list[str]] = None):
    logging.basicConfig(level=resolve_log_level(os.environ.get(LOG_LEVEL_ENV)),
                        format="%(levelname)s %(name)s: %(message)s",
                        stream=sys.stderr)
    try:
        # Dynamically determine the command used to invoke the script
        if 'py.exe' in sys.executable.lower():
            ConfigError.set_invocation_command('py')
        else:
            ConfigError.set_invocation_command('python')

        args = sys.argv[1:] if argv is None else argv
        dice = DiceParser.parse(args)

        with GameSession(dice) as session:
            GameController(session).run()

    except ConfigError as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    except ExitRequested:
        sys.exit(0)
    except (KeyboardInterrupt, EOFError):
        print("\nGame interrupted. Goodbye!")
        sys.exit(0)

if __name__ == "__main__":
    main()
