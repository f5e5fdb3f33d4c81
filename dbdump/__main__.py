import sys

from db_dumper import main

sys.exit(main())
