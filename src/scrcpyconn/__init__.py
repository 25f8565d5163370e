"""


Device connections to scrcpy-server

- Server: owns the connection to one scrcpy-server instance running on a device. Pushes the
  server, opens an adb tunnel, spawns the server process and hands out the video and control sockets.
- Tunnel: a port mapping between the host and the device, created with "adb reverse" (the device
  connects to us) or "adb forward" (we connect to the device.)
- ServerWatcher: a background thread that waits for the server process to die and wakes up any
  blocking accept() on the listening socket.
- DirectClient: starts/stops a server that is already reachable over the network, via an HTTP
  control endpoint, without using adb at all.
- ServerConnector: starts a new Server on connect() and exposes its sockets as a conduit of a
  video stream and a control stream. disconnect() stops the server.


Lifecycle:

    server = Server()
    server.start(serial, params)      # push, tunnel, spawn
    video, control = server.connect_to()
    ...
    server.stop()                     # close sockets, remove tunnel, wait for the server to die
    server.destroy()

A server is single-use once started. A failed start() undoes its own setup and leaves the server
idle, so start() may be called again. A failed connect_to() leaves it started: call stop().


## Threading

Two threads touch a server: the thread that owns it (start/connect_to/stop) and the watcher
thread started by start(). They share only the "process terminated" flag, guarded by a condition,
and the listening socket, which is closed by whichever thread gets there first.

"""
