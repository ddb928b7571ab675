from shipgate.cli import main

raise SystemExit(main())
