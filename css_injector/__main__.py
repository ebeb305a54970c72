from css_injector.launcher import main

raise SystemExit(main())
