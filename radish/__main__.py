from radish.cli import main

main()
