from .issues import CopilotHandoff, GitHubIssueClient, GitHubIssueError, create_issue

__all__ = ["CopilotHandoff", "GitHubIssueClient", "GitHubIssueError", "create_issue"]
