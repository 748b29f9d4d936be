from execctl.cli import main

main()
