from vm_monitor.main import run

run()
