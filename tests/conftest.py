import pytest

from fair_dice import CryptoProvider, DiceParser, GameUI


class ScriptedConsole:
    """Feeds canned answers to prompts and records everything written."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.lines = []
        self.prompts = 0
        self.flushes = 0

    def read(self, prompt):
        self.prompts += 1
        self.lines.append(prompt)
        if not self.answers:
            raise EOFError("no more scripted input")
        return self.answers.pop(0)

    def write(self, text):
        self.lines.extend(str(text).split("\n"))

    def flush(self):
        self.flushes += 1

    @property
    def output(self):
        return "\n".join(self.lines)


class ScriptedCrypto(CryptoProvider):
    """Returns queued values from generate_uniform; keys stay random."""

    def __init__(self, values):
        super().__init__()
        self.values = list(values)
        self.ranges = []

    def generate_uniform(self, max_val):
        self.ranges.append(max_val)
        return self.values.pop(0)


@pytest.fixture
def make_console():
    def factory(*answers):
        console = ScriptedConsole(answers)
        return console, GameUI(reader=console.read, writer=console.write,
                           flusher=console.flush)
    return factory


@pytest.fixture
def classic_dice():
    return DiceParser.parse(["2,2,4,4,9,9", "6,8,1,1,8,6", "7,5,3,7,5,3"])
