"""Bridge layer between Shipyard and the external tools it drives.

Modules
-------
credentials
    ``CredentialProvider`` protocol and the environment-backed default.
process
    Locating binaries and running them as subprocesses.
docker_cli
    ``DockerCli`` builds and pushes images through the docker CLI.
kubectl
    ``KubectlClient`` applies manifests and reads workload readiness.
"""
