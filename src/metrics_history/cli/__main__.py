from metrics_history.cli.app import main

main()
