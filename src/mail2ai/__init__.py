"""Mail2AI -- 邮件驱动的持久化任务队列与调度器"""

__version__ = "0.1.0"
