"""Built-in transform modules, registered under the task_orchestrator.tasks entry point group."""
