from iyield_ingest.cli import main

main()
