# mediarelay/__main__.py
from mediarelay.transport.http_app import main

main()
