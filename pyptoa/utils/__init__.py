from . import testing
