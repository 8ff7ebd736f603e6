from nomad_chaos.cli.main import main

main()
