from dbpitfalls.cli import main

raise SystemExit(main())
