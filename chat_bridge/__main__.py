from chat_bridge.app import run

run()
