from agent_migration.migrate_agent import main

main()
