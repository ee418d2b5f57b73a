"""Agent harness for dispatching GitHub events to an OpenCode coding agent.

This package provides:
- GitHub webhook intake and trigger filtering
- Acknowledgment reactions and labels on the triggering thread
- Backend bootstrap for the OpenCode server process
- Agent execution with retry, event stream monitoring and completion polling
- Relaying results and formatted errors back to GitHub
- Structured logging and Prometheus metrics
"""
