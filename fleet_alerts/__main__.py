from fleet_alerts.main import main

main()
