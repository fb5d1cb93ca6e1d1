from kubevirt_actuator.main import main

main()
