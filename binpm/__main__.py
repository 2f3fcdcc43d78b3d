# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from binpm.cli import main

raise SystemExit(main())
