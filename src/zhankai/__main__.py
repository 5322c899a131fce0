from zhankai.cli import main

raise SystemExit(main())
