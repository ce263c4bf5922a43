import sys

from .torrent_unpacker import main

if __name__ == "__main__":
    sys.exit(main())
