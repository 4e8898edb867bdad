"""Allow ``python -m asm_stackframe``."""

from asm_stackframe.cli import main

raise SystemExit(main())
