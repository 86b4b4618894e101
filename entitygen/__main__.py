from entitygen.cli import main

main()
