"""
Dashboard Satellite - Chia 节点监控卫星

负责：
- 订阅守护进程推送事件并定时轮询各服务状态
- 维护每个服务的内存快照，计算最小差量
- 节流合并差量后上报到远端 Dashboard
- 同步状态变化、新证明等事件的通知
"""

__version__ = "1.0.0"
__author__ = "AI-A"
