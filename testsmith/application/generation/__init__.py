"""Generation services: chunking, planning, verification, the agent and the orchestrator."""
