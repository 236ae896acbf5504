# Cart Server
