from pytest_socket import disable_socket

def pytest_runtest_setup():
    """
    Runs before every test.
    The monitor talks to a serial port and a terminal only, so any
    socket use in a test is a mistake: fail it with SocketBlockedError.
    """
    disable_socket(allow_unix_socket=True)
