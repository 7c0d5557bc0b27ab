from q_cli.cli import main

main()
