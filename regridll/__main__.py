import sys

from .cli import cmd_line_call

sys.exit(cmd_line_call())
