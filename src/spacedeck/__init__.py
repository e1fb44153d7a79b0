"""spacedeck: spaced-repetition scheduling and deck mastery scoring."""

from spacedeck.consts import VERSION

__version__ = VERSION
