from audiomerger.cli.main import main

main()
