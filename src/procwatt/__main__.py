"""Allow ``python -m procwatt``."""

from procwatt.daemon import main

raise SystemExit(main())
