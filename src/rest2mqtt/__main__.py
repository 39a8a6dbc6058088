import sys

from rest2mqtt.cli import main

sys.exit(main())
