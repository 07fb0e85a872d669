"""领域层模型与协议。

包含：
- models: 命令（tagged union）、流式事件、聊天消息与设置快照。
- conversation: 会话存储与设置存储的协议定义。
- exceptions: 业务异常类型定义。
"""
