from iac_runner.cli import main

raise SystemExit(main())
