from embpipe.cli import main

raise SystemExit(main())
