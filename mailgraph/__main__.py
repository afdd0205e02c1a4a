from mailgraph.cli import main

main()
